"""Tool input models and the schemas generated from them.

Each category has a pydantic input model; capability tags on a descriptor add
overlay fields on top of it. The same model yields the advertised JSON schema
and the defaults the dispatcher merges into a call.
"""

from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Type

from mcp.types import Tool
from pydantic import BaseModel, Field, create_model

from .registry import (
    EXECUTE_CUSTOM_TOOL,
    LIST_MODELS_TOOL,
    Capability,
    Category,
    ModelDescriptor,
    all_models,
)


# ============================================================================
# Enums
# ============================================================================

class ImageSize(str, Enum):
    """Named aspect presets accepted by fal.ai image endpoints."""
    SQUARE_HD = "square_hd"
    SQUARE = "square"
    PORTRAIT_4_3 = "portrait_4_3"
    PORTRAIT_16_9 = "portrait_16_9"
    LANDSCAPE_4_3 = "landscape_4_3"
    LANDSCAPE_16_9 = "landscape_16_9"


class AspectRatio(str, Enum):
    """Supported aspect ratios for video generation."""
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"
    STANDARD = "4:3"
    STANDARD_PORTRAIT = "3:4"


class CategoryHint(str, Enum):
    """Expected output shape of a raw endpoint execution."""
    IMAGE = "image"
    VIDEO = "video"
    IMAGE_TO_VIDEO = "image_to_video"
    OTHER = "other"


CATEGORY_FILTERS = ["all"] + [c.value for c in Category]
SAFETY_TOLERANCES = ["1", "2", "3", "4", "5", "6"]


def _values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


def _optional(extra: Optional[Dict[str, Any]] = None) -> Callable[[Dict[str, Any]], None]:
    """Render an ``Optional[X] = None`` field as a plain ``X`` with no default."""
    def update(schema: Dict[str, Any]) -> None:
        schema.pop("default", None)
        variants = [s for s in schema.pop("anyOf", []) if s.get("type") != "null"]
        if len(variants) == 1:
            schema.update(variants[0])
        schema.update(extra or {})
    return update


# ============================================================================
# Input Models
# ============================================================================

class ImageGenerationInput(BaseModel):
    """Input for text-to-image models."""

    prompt: str = Field(..., description="Text prompt for image generation")
    image_size: str = Field(
        default=ImageSize.LANDSCAPE_4_3.value,
        description="Output size preset",
        json_schema_extra={"enum": _values(ImageSize)},
    )
    num_images: float = Field(default=1, ge=1, le=4, description="Number of images to generate")


class TextToVideoInput(BaseModel):
    """Input for text-to-video models."""

    prompt: str = Field(..., description="Text prompt for video generation")
    duration: float = Field(default=5, ge=1, le=30, description="Video duration in seconds")
    aspect_ratio: str = Field(
        default=AspectRatio.LANDSCAPE.value,
        description="Video aspect ratio",
        json_schema_extra={"enum": _values(AspectRatio)},
    )


class ImageToVideoInput(BaseModel):
    """Input for image-to-video models."""

    image_url: str = Field(..., description="URL of the input image")
    prompt: Optional[str] = Field(
        default=None,
        description="Motion description prompt (optional)",
        json_schema_extra=_optional(),
    )
    duration: float = Field(default=5, ge=1, le=30, description="Video duration in seconds")
    aspect_ratio: str = Field(
        default=AspectRatio.LANDSCAPE.value,
        description="Video aspect ratio",
        json_schema_extra={"enum": _values(AspectRatio)},
    )


class ListModelsInput(BaseModel):
    category: str = Field(
        default="all",
        description="Filter models by category",
        json_schema_extra={"enum": list(CATEGORY_FILTERS)},
    )


class ExecuteCustomInput(BaseModel):
    endpoint: str = Field(
        ...,
        description="FAL model endpoint (e.g., fal-ai/flux/schnell, fal-ai/custom-model)",
    )
    input_params: Dict[str, Any] = Field(..., description="Input parameters for the model (varies by model)")
    category_hint: str = Field(
        default=CategoryHint.OTHER.value,
        description="Hint about the expected output type for proper handling",
        json_schema_extra={"enum": _values(CategoryHint)},
    )


_CATEGORY_INPUTS: Dict[Category, Type[BaseModel]] = {
    Category.IMAGE_GENERATION: ImageGenerationInput,
    Category.TEXT_TO_VIDEO: TextToVideoInput,
    Category.IMAGE_TO_VIDEO: ImageToVideoInput,
}


def _capability_fields(capabilities: FrozenSet[Capability]) -> Dict[str, Tuple[Any, Any]]:
    fields: Dict[str, Tuple[Any, Any]] = {}
    if Capability.GUIDANCE in capabilities:
        fields["num_inference_steps"] = (
            float, Field(default=25, ge=1, le=50, description="Number of denoising steps"),
        )
        fields["guidance_scale"] = (
            float, Field(default=3.5, ge=1, le=20, description="How closely to follow the prompt"),
        )
    if Capability.NEGATIVE_PROMPT in capabilities:
        fields["negative_prompt"] = (
            Optional[str], Field(default=None, description="Negative prompt", json_schema_extra=_optional()),
        )
    if Capability.SAFETY_TOLERANCE in capabilities:
        fields["safety_tolerance"] = (
            Optional[str],
            Field(
                default=None,
                description="Safety tolerance, 1 (strict) to 6 (permissive)",
                json_schema_extra=_optional({"enum": SAFETY_TOLERANCES}),
            ),
        )
    return fields


@lru_cache(maxsize=None)
def _input_model(category: Category, capabilities: FrozenSet[Capability]) -> Type[BaseModel]:
    base = _CATEGORY_INPUTS[category]
    # capability overlays only apply to image generation
    if category != Category.IMAGE_GENERATION or not capabilities:
        return base
    suffix = "".join(c.value.title().replace("_", "") for c in sorted(capabilities, key=lambda c: c.value))
    return create_model(f"{base.__name__}With{suffix}", __base__=base, **_capability_fields(capabilities))


def input_model(model: ModelDescriptor) -> Type[BaseModel]:
    """Input model for a registry model: its category base plus capability overlays."""
    return _input_model(model.category, model.capabilities)


def input_defaults(inputs: Type[BaseModel]) -> Dict[str, Any]:
    return {
        name: field.default
        for name, field in inputs.model_fields.items()
        if not field.is_required() and field.default is not None
    }


def required_inputs(inputs: Type[BaseModel]) -> List[str]:
    return [name for name, field in inputs.model_fields.items() if field.is_required()]


def _input_schema(inputs: Type[BaseModel]) -> Dict[str, Any]:
    schema = inputs.model_json_schema()
    schema.setdefault("required", [])
    return schema


# ============================================================================
# Schemas
# ============================================================================

def build_schema(model: ModelDescriptor) -> Tool:
    return Tool(
        name=model.id,
        description=f"{model.name} - {model.description}",
        inputSchema=_input_schema(input_model(model)),
    )


def list_models_schema() -> Tool:
    return Tool(
        name=LIST_MODELS_TOOL,
        description="List all available models in the current registry with their capabilities",
        inputSchema=_input_schema(ListModelsInput),
    )


def execute_custom_schema() -> Tool:
    return Tool(
        name=EXECUTE_CUSTOM_TOOL,
        description="Execute any FAL model by specifying the endpoint directly",
        inputSchema=_input_schema(ExecuteCustomInput),
    )


def build_catalog() -> List[Tool]:
    """Full tool catalog: image, text-to-video, image-to-video, then the synthetic tools."""
    tools = [build_schema(model) for model in all_models()]
    tools.append(list_models_schema())
    tools.append(execute_custom_schema())
    return tools
