"""Tool dispatch: resolve a tool, call fal.ai, post-process the media.

The dispatcher holds no per-request state. Credentials arrive as a
``RequestConfig`` argument on every call and only flow down to the gateway.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Type, Union

from mcp.types import CallToolResult, TextContent, Tool
from pydantic import BaseModel

from .config import RequestConfig, ServerSettings
from .errors import InternalError, ToolError, UpstreamError, ValidationError
from .media import MediaProcessor
from .registry import (
    EXECUTE_CUSTOM_TOOL,
    LIST_MODELS_TOOL,
    Capability,
    Category,
    ModelDescriptor,
    all_models,
    models_in,
    resolve,
)
from .schemas import (
    CategoryHint,
    ExecuteCustomInput,
    build_catalog,
    input_defaults,
    input_model,
    required_inputs,
)
from .upstream import FalGateway, describe_error

logger = logging.getLogger(__name__)

_CATEGORY_BY_NAME = {c.value.lower(): c for c in Category}


# ============================================================================
# Output variants
# ============================================================================

class ImageOutput(BaseModel):
    images: List[Dict[str, Any]]


class VideoOutput(BaseModel):
    video: Dict[str, Any]


class OpaqueOutput(BaseModel):
    payload: Any = None


Output = Union[ImageOutput, VideoOutput, OpaqueOutput]


def _image_list(payload: Any) -> Optional[List[Dict[str, Any]]]:
    images = payload.get("images") if isinstance(payload, dict) else None
    if isinstance(images, list) and all(isinstance(i, dict) and i.get("url") for i in images):
        return images
    return None


def _video(payload: Any) -> Optional[Dict[str, Any]]:
    video = payload.get("video") if isinstance(payload, dict) else None
    if isinstance(video, dict) and video.get("url"):
        return video
    return None


def classify_output(payload: Any, hint: str) -> Output:
    """Decide how to treat an otherwise opaque payload from the category hint.

    ``image`` expects an image list, ``video``/``image_to_video`` expect a
    video, ``other`` tries both in that order. Anything else is passed through.
    """
    if hint in (CategoryHint.IMAGE, CategoryHint.OTHER):
        images = _image_list(payload)
        if images is not None:
            return ImageOutput(images=images)
    if hint in (CategoryHint.VIDEO, CategoryHint.IMAGE_TO_VIDEO, CategoryHint.OTHER):
        video = _video(payload)
        if video is not None:
            return VideoOutput(video=video)
    return OpaqueOutput(payload=payload)


def _text_result(payload: Dict[str, Any]) -> CallToolResult:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return CallToolResult(content=[TextContent(type="text", text=text)])


# ============================================================================
# Dispatcher
# ============================================================================

class Dispatcher:
    """Maps tool names to handlers and shapes their responses."""

    def __init__(
        self,
        settings: ServerSettings,
        gateway: Optional[FalGateway] = None,
        media: Optional[MediaProcessor] = None,
    ):
        self.settings = settings
        self.gateway = gateway or FalGateway()
        self.media = media or MediaProcessor(settings)
        self._synthetic = {
            LIST_MODELS_TOOL: self._list_models,
            EXECUTE_CUSTOM_TOOL: self._execute_custom,
        }
        self._handlers = {
            Category.IMAGE_GENERATION: self._generate_images,
            Category.TEXT_TO_VIDEO: self._text_to_video,
            Category.IMAGE_TO_VIDEO: self._image_to_video,
        }

    def list_tools(self) -> List[Tool]:
        return build_catalog()

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]],
        config: RequestConfig,
    ) -> CallToolResult:
        """Run one tool call. Failures are raised as ``ToolError`` subclasses."""
        arguments = dict(arguments or {})
        try:
            handler = self._synthetic.get(name)
            if handler is not None:
                payload = await handler(arguments, config)
            else:
                model = resolve(name)
                payload = await self._handlers[model.category](model, arguments, config)
        except ToolError as e:
            logger.warning("Tool %s failed: %s", name, e.message)
            raise
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            raise InternalError(f"{type(e).__name__} - {e}", tool=name) from e
        return _text_result(payload)

    # ------------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------------

    @staticmethod
    def _require(tool_name: str, inputs: Type[BaseModel], arguments: Dict[str, Any]) -> None:
        for field in required_inputs(inputs):
            value = arguments.get(field)
            if value is None or value == "":
                raise ValidationError(
                    f"Missing required argument: {field}", tool=tool_name, field=field,
                )

    def _prepare(self, model: ModelDescriptor, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Check required arguments, then lay them over the input model's defaults."""
        inputs = input_model(model)
        self._require(model.id, inputs, arguments)
        merged = input_defaults(inputs)
        merged.update({k: v for k, v in arguments.items() if v is not None})
        return merged

    async def _invoke(self, failure: str, label: str, endpoint: str, params: Dict[str, Any], key: str) -> Any:
        try:
            return await self.gateway.submit(endpoint, params, key)
        except Exception as e:
            raise UpstreamError(f"{failure}: {describe_error(e)}", model=label, endpoint=endpoint) from e

    def _settings_echo(self) -> Dict[str, Any]:
        autoopen = self.settings.autoopen
        return {
            "download_path": str(self.settings.download_path) if self.settings.download_path else None,
            "data_url_settings": {
                "enabled": self.settings.enable_data_urls,
                "max_size_mb": self.settings.max_data_url_size_mb,
            },
            "autoopen_settings": {
                "enabled": autoopen,
                "note": "Files automatically opened with default application" if autoopen else "Auto-open disabled",
            },
        }

    async def _run_model(self, model: ModelDescriptor, params: Dict[str, Any], config: RequestConfig) -> Any:
        key = config.require_fal_key()
        return await self._invoke(f"{model.name} generation failed", model.name, model.endpoint, params, key)

    # ------------------------------------------------------------------------
    # Registry models
    # ------------------------------------------------------------------------

    async def _generate_images(self, model: ModelDescriptor, arguments: Dict[str, Any], config: RequestConfig):
        args = self._prepare(model, arguments)

        params: Dict[str, Any] = {"prompt": args["prompt"]}
        if args.get("image_size"):
            params["image_size"] = args["image_size"]
        num_images = args.get("num_images")
        if isinstance(num_images, (int, float)) and num_images > 1:
            params["num_images"] = num_images
        if model.supports(Capability.GUIDANCE):
            for field in ("num_inference_steps", "guidance_scale"):
                if args.get(field):
                    params[field] = args[field]
        if model.supports(Capability.NEGATIVE_PROMPT) and args.get("negative_prompt"):
            params["negative_prompt"] = args["negative_prompt"]
        if model.supports(Capability.SAFETY_TOLERANCE) and args.get("safety_tolerance"):
            params["safety_tolerance"] = args["safety_tolerance"]

        data = await self._run_model(model, params, config)
        images = _image_list(data)
        if images is None:
            raise UpstreamError(
                f"{model.name} returned an unexpected response: no images",
                model=model.name, endpoint=model.endpoint,
            )
        processed = await self.media.process_images(images, model.id)

        return {
            "model": model.name,
            "id": model.id,
            "endpoint": model.endpoint,
            "prompt": args["prompt"],
            "images": [item.to_dict() for item in processed],
            "metadata": params,
            **self._settings_echo(),
        }

    async def _render_video(
        self,
        model: ModelDescriptor,
        params: Dict[str, Any],
        config: RequestConfig,
        echo: Dict[str, Any],
    ) -> Dict[str, Any]:
        data = await self._run_model(model, params, config)
        video = _video(data)
        if video is None:
            raise UpstreamError(
                f"{model.name} returned an unexpected response: no video",
                model=model.name, endpoint=model.endpoint,
            )
        processed = await self.media.process_video(video, model.id)

        return {
            "model": model.name,
            "id": model.id,
            "endpoint": model.endpoint,
            **echo,
            "video": processed.to_dict(),
            "metadata": params,
            **self._settings_echo(),
        }

    def _video_params(self, params: Dict[str, Any], args: Dict[str, Any]) -> Dict[str, Any]:
        for field in ("duration", "aspect_ratio"):
            if args.get(field):
                params[field] = args[field]
        return params

    async def _text_to_video(self, model: ModelDescriptor, arguments: Dict[str, Any], config: RequestConfig):
        args = self._prepare(model, arguments)

        params = self._video_params({"prompt": args["prompt"]}, args)
        return await self._render_video(model, params, config, {"prompt": args["prompt"]})

    async def _image_to_video(self, model: ModelDescriptor, arguments: Dict[str, Any], config: RequestConfig):
        args = self._prepare(model, arguments)

        params: Dict[str, Any] = {"image_url": args["image_url"]}
        if args.get("prompt"):
            params["prompt"] = args["prompt"]
        params = self._video_params(params, args)
        echo = {"input_image": args["image_url"], "prompt": args.get("prompt")}
        return await self._render_video(model, params, config, echo)

    # ------------------------------------------------------------------------
    # Synthetic tools
    # ------------------------------------------------------------------------

    async def _list_models(self, arguments: Dict[str, Any], config: RequestConfig):
        category = arguments.get("category") or "all"
        if category == "all":
            models = all_models()
        else:
            matched = _CATEGORY_BY_NAME.get(str(category).lower())
            models = models_in(matched) if matched else ()

        listed = [
            {
                "id": model.id,
                "name": model.name,
                "description": model.description,
                "endpoint": model.endpoint,
                "category": model.category.value,
            }
            for model in models
        ]
        return {
            "total_models": len(listed),
            "category_filter": category,
            "models": listed,
            "note": f"Use '{EXECUTE_CUSTOM_TOOL}' to run any FAL endpoint not in this registry",
        }

    async def _execute_custom(self, arguments: Dict[str, Any], config: RequestConfig):
        self._require(EXECUTE_CUSTOM_TOOL, ExecuteCustomInput, arguments)
        endpoint = arguments["endpoint"]
        input_params = arguments["input_params"]
        if not isinstance(input_params, dict):
            raise ValidationError("input_params must be an object", tool=EXECUTE_CUSTOM_TOOL, field="input_params")
        hint = arguments.get("category_hint") or CategoryHint.OTHER.value

        key = config.require_fal_key()
        data = await self._invoke(
            f"Custom model execution failed for {endpoint}", endpoint, endpoint, input_params, key,
        )

        label = re.sub(r"[^a-zA-Z0-9]", "_", endpoint)
        output = classify_output(data, hint)
        response: Dict[str, Any] = {"endpoint": endpoint, "category_hint": hint}

        if isinstance(output, ImageOutput):
            processed = await self.media.process_images(output.images, label)
            response["images"] = [item.to_dict() for item in processed]
        elif isinstance(output, VideoOutput):
            processed = await self.media.process_video(output.video, label)
            response["video"] = processed.to_dict()
        else:
            response.update({
                "raw_output": output.payload,
                "input_params": input_params,
                "note": "Raw output - model type not recognized for enhanced processing",
            })
            return response

        response.update({
            "raw_output": data,
            "input_params": input_params,
            "download_path": str(self.settings.download_path) if self.settings.download_path else None,
        })
        return response
