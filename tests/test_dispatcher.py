"""Tests for tool dispatch."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fal_media_mcp.config import RequestConfig
from fal_media_mcp.dispatcher import (
    Dispatcher,
    ImageOutput,
    OpaqueOutput,
    VideoOutput,
    classify_output,
)
from fal_media_mcp.errors import (
    ConfigError,
    InternalError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from fal_media_mcp.registry import IMAGE_GENERATION_MODELS, all_models

from tests.helpers import IMAGE_PAYLOAD, VIDEO_PAYLOAD, FakeGateway, payload_of


class TestListModels:
    @pytest.mark.asyncio
    async def test_filter_by_image_generation(self, dispatcher, config):
        result = await dispatcher.call_tool("list_available_models", {"category": "imageGeneration"}, config)
        payload = payload_of(result)

        assert payload["total_models"] == len(IMAGE_GENERATION_MODELS)
        assert payload["category_filter"] == "imageGeneration"
        assert {m["category"] for m in payload["models"]} == {"imageGeneration"}
        assert [m["id"] for m in payload["models"]] == [m.id for m in IMAGE_GENERATION_MODELS]

    @pytest.mark.asyncio
    async def test_defaults_to_all(self, dispatcher, config):
        payload = payload_of(await dispatcher.call_tool("list_available_models", None, config))

        assert payload["total_models"] == len(all_models())
        assert payload["category_filter"] == "all"

    @pytest.mark.asyncio
    async def test_unknown_category_lists_nothing(self, dispatcher, config):
        payload = payload_of(await dispatcher.call_tool("list_available_models", {"category": "audio"}, config))

        assert payload["total_models"] == 0
        assert payload["models"] == []

    @pytest.mark.asyncio
    async def test_does_not_need_credentials(self, dispatcher, gateway):
        await dispatcher.call_tool("list_available_models", {}, RequestConfig())
        assert gateway.calls == []


class TestResolveAndValidate:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher, config, gateway):
        with pytest.raises(NotFoundError) as exc:
            await dispatcher.call_tool("no_such_model", {"prompt": "x"}, config)
        assert exc.value.error.code == -32601
        assert gateway.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arguments", [{}, {"prompt": ""}, {"prompt": None}])
    async def test_missing_prompt(self, dispatcher, config, gateway, arguments):
        with pytest.raises(ValidationError) as exc:
            await dispatcher.call_tool("flux_dev", arguments, config)
        assert exc.value.error.data["field"] == "prompt"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_image_url(self, dispatcher, config):
        with pytest.raises(ValidationError):
            await dispatcher.call_tool("kling_master_image", {"prompt": "move"}, config)

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_upstream(self, dispatcher, gateway):
        with pytest.raises(ConfigError):
            await dispatcher.call_tool("flux_dev", {"prompt": "a cat"}, RequestConfig())
        assert gateway.calls == []


class TestImageGeneration:
    @pytest.mark.asyncio
    async def test_defaults_sent_for_guidance_model(self, dispatcher, config, gateway):
        payload = payload_of(await dispatcher.call_tool("flux_dev", {"prompt": "a cat"}, config))

        call = gateway.calls[0]
        assert call["endpoint"] == "fal-ai/flux/dev"
        assert call["key"] == "test-key"
        assert call["arguments"] == {
            "prompt": "a cat",
            "image_size": "landscape_4_3",
            "num_inference_steps": 25,
            "guidance_scale": 3.5,
        }
        assert payload["model"] == "FLUX Dev"
        assert payload["id"] == "flux_dev"
        assert payload["prompt"] == "a cat"
        assert payload["metadata"] == call["arguments"]
        assert payload["images"] == [{"url": "https://fal.media/files/a.jpg", "width": 1024, "height": 768}]
        assert payload["data_url_settings"] == {"enabled": False, "max_size_mb": 2}
        assert payload["autoopen_settings"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_num_images_only_sent_when_more_than_one(self, dispatcher, config, gateway):
        await dispatcher.call_tool("imagen4", {"prompt": "a", "num_images": 1}, config)
        await dispatcher.call_tool("imagen4", {"prompt": "a", "num_images": 3}, config)
        await dispatcher.call_tool("imagen4", {"prompt": "a", "num_images": -2}, config)
        await dispatcher.call_tool("imagen4", {"prompt": "a", "num_images": 0.5}, config)

        assert "num_images" not in gateway.calls[0]["arguments"]
        assert gateway.calls[1]["arguments"]["num_images"] == 3
        assert "num_images" not in gateway.calls[2]["arguments"]
        assert "num_images" not in gateway.calls[3]["arguments"]

    @pytest.mark.asyncio
    async def test_capability_gated_fields(self, dispatcher, config, gateway):
        extra = {"negative_prompt": "blurry", "guidance_scale": 7, "safety_tolerance": "2"}
        await dispatcher.call_tool("imagen4", {"prompt": "a", **extra}, config)
        await dispatcher.call_tool("stable_diffusion_35", {"prompt": "a", **extra}, config)
        await dispatcher.call_tool("flux_kontext", {"prompt": "a", **extra}, config)

        imagen, sd, kontext = (call["arguments"] for call in gateway.calls)
        assert set(imagen) == {"prompt", "image_size"}
        assert sd["negative_prompt"] == "blurry"
        assert sd["guidance_scale"] == 7
        assert "safety_tolerance" not in sd
        assert kontext["safety_tolerance"] == "2"
        assert "negative_prompt" not in kontext

    @pytest.mark.asyncio
    async def test_upstream_failure(self, settings):
        dispatcher = Dispatcher(settings, gateway=FakeGateway(error=RuntimeError("queue exploded")))
        with pytest.raises(UpstreamError) as exc:
            await dispatcher.call_tool("flux_dev", {"prompt": "a"}, RequestConfig(fal_key="k"))

        assert exc.value.message.startswith("FLUX Dev generation failed: ")
        assert "queue exploded" in exc.value.message
        assert exc.value.error.data == {"kind": "upstream", "model": "FLUX Dev", "endpoint": "fal-ai/flux/dev"}

    @pytest.mark.asyncio
    async def test_upstream_auth_failure_is_described(self, settings):
        request = httpx.Request("POST", "https://queue.fal.run/fal-ai/flux/dev")
        error = httpx.HTTPStatusError("401", request=request, response=httpx.Response(401, request=request))
        dispatcher = Dispatcher(settings, gateway=FakeGateway(error=error))

        with pytest.raises(UpstreamError) as exc:
            await dispatcher.call_tool("flux_dev", {"prompt": "a"}, RequestConfig(fal_key="bad"))
        assert "Authentication failed" in exc.value.message

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, settings):
        dispatcher = Dispatcher(settings, gateway=FakeGateway(payload={"detail": "nothing"}))
        with pytest.raises(UpstreamError):
            await dispatcher.call_tool("flux_dev", {"prompt": "a"}, RequestConfig(fal_key="k"))


class TestVideo:
    @pytest.mark.asyncio
    async def test_text_to_video(self, dispatcher, config, gateway):
        payload = payload_of(await dispatcher.call_tool("veo3", {"prompt": "waves"}, config))

        assert gateway.calls[0]["arguments"] == {"prompt": "waves", "duration": 5, "aspect_ratio": "16:9"}
        assert payload["video"] == VIDEO_PAYLOAD["video"]
        assert payload["prompt"] == "waves"
        assert "input_image" not in payload

    @pytest.mark.asyncio
    async def test_image_to_video_omits_absent_prompt(self, dispatcher, config, gateway):
        arguments = {"image_url": "https://example.com/cat.png", "duration": 10}
        payload = payload_of(await dispatcher.call_tool("kling_master_image", arguments, config))

        assert gateway.calls[0]["arguments"] == {
            "image_url": "https://example.com/cat.png",
            "duration": 10,
            "aspect_ratio": "16:9",
        }
        assert payload["input_image"] == "https://example.com/cat.png"
        assert payload["prompt"] is None

    @pytest.mark.asyncio
    async def test_video_missing_from_response(self, settings):
        dispatcher = Dispatcher(settings, gateway=FakeGateway(payload=IMAGE_PAYLOAD))
        with pytest.raises(UpstreamError):
            await dispatcher.call_tool("veo3", {"prompt": "waves"}, RequestConfig(fal_key="k"))


class TestExecuteCustomModel:
    @pytest.mark.asyncio
    async def test_image_output(self, dispatcher, config, gateway):
        arguments = {"endpoint": "fal-ai/flux/schnell", "input_params": {"prompt": "x"}, "category_hint": "image"}
        payload = payload_of(await dispatcher.call_tool("execute_custom_model", arguments, config))

        assert gateway.calls[0] == {"endpoint": "fal-ai/flux/schnell", "arguments": {"prompt": "x"}, "key": "test-key"}
        assert payload["images"][0]["url"] == IMAGE_PAYLOAD["images"][0]["url"]
        assert payload["raw_output"] == IMAGE_PAYLOAD
        assert payload["category_hint"] == "image"

    @pytest.mark.asyncio
    async def test_video_output(self, settings, config):
        dispatcher = Dispatcher(settings, gateway=FakeGateway(payload=VIDEO_PAYLOAD))
        arguments = {"endpoint": "fal-ai/some-video", "input_params": {}, "category_hint": "video"}
        payload = payload_of(await dispatcher.call_tool("execute_custom_model", arguments, config))

        assert payload["video"]["url"] == VIDEO_PAYLOAD["video"]["url"]

    @pytest.mark.asyncio
    async def test_opaque_fallback(self, settings, config):
        raw = {"text": "a caption"}
        dispatcher = Dispatcher(settings, gateway=FakeGateway(payload=raw))
        arguments = {"endpoint": "fal-ai/captioner", "input_params": {"image_url": "u"}}
        payload = payload_of(await dispatcher.call_tool("execute_custom_model", arguments, config))

        assert payload["category_hint"] == "other"
        assert payload["raw_output"] == raw
        assert "images" not in payload
        assert "video" not in payload
        assert "note" in payload

    @pytest.mark.asyncio
    async def test_input_params_must_be_object(self, dispatcher, config, gateway):
        with pytest.raises(ValidationError):
            await dispatcher.call_tool(
                "execute_custom_model", {"endpoint": "fal-ai/x", "input_params": "prompt=x"}, config,
            )
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_upstream_failure_names_endpoint(self, settings, config):
        dispatcher = Dispatcher(settings, gateway=FakeGateway(error=RuntimeError("boom")))
        with pytest.raises(UpstreamError) as exc:
            await dispatcher.call_tool("execute_custom_model", {"endpoint": "fal-ai/x", "input_params": {}}, config)
        assert exc.value.message.startswith("Custom model execution failed for fal-ai/x")
        assert exc.value.error.data["endpoint"] == "fal-ai/x"


class TestClassifyOutput:
    def test_image_hint(self):
        assert isinstance(classify_output(IMAGE_PAYLOAD, "image"), ImageOutput)
        assert isinstance(classify_output(VIDEO_PAYLOAD, "image"), OpaqueOutput)

    def test_video_hints(self):
        assert isinstance(classify_output(VIDEO_PAYLOAD, "video"), VideoOutput)
        assert isinstance(classify_output(VIDEO_PAYLOAD, "image_to_video"), VideoOutput)
        assert isinstance(classify_output(IMAGE_PAYLOAD, "video"), OpaqueOutput)

    def test_other_tries_both(self):
        assert isinstance(classify_output(IMAGE_PAYLOAD, "other"), ImageOutput)
        assert isinstance(classify_output(VIDEO_PAYLOAD, "other"), VideoOutput)

    def test_opaque_keeps_payload(self):
        output = classify_output(["not", "a", "dict"], "other")
        assert isinstance(output, OpaqueOutput)
        assert output.payload == ["not", "a", "dict"]


class TestInternalErrors:
    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, dispatcher, config):
        with patch.object(dispatcher.media, "process_images", AsyncMock(side_effect=RuntimeError("disk on fire"))):
            with pytest.raises(InternalError) as exc:
                await dispatcher.call_tool("flux_dev", {"prompt": "a"}, config)
        assert "disk on fire" in exc.value.message
