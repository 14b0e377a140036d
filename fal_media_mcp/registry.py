"""Static registry of the fal.ai models exposed as tools.

Ids must be unique across all three category lists. This is not checked at
runtime; ``tests/test_registry.py`` guards it.
"""

from enum import Enum
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .errors import NotFoundError


# ============================================================================
# Enums
# ============================================================================

class Category(str, Enum):
    """Model categories, using their wire names."""
    IMAGE_GENERATION = "imageGeneration"
    TEXT_TO_VIDEO = "textToVideo"
    IMAGE_TO_VIDEO = "imageToVideo"


class Capability(str, Enum):
    """Optional parameter groups a model accepts on top of its category's."""
    GUIDANCE = "guidance"                # num_inference_steps + guidance_scale
    NEGATIVE_PROMPT = "negative_prompt"
    SAFETY_TOLERANCE = "safety_tolerance"


# ============================================================================
# Descriptors
# ============================================================================

class ModelDescriptor(BaseModel):
    """One upstream generative-media endpoint."""
    model_config = ConfigDict(frozen=True)

    id: str
    endpoint: str
    name: str
    description: str
    category: Category
    capabilities: FrozenSet[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _model(model_id, endpoint, name, description, category, *capabilities) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        endpoint=endpoint,
        name=name,
        description=description,
        category=category,
        capabilities=frozenset(capabilities),
    )


_IMG = Category.IMAGE_GENERATION
_T2V = Category.TEXT_TO_VIDEO
_I2V = Category.IMAGE_TO_VIDEO

IMAGE_GENERATION_MODELS: Tuple[ModelDescriptor, ...] = (
    _model("imagen4", "fal-ai/imagen4/preview", "Imagen 4",
           "Google's latest text-to-image model", _IMG),
    _model("flux_kontext", "fal-ai/flux-pro/kontext", "FLUX Kontext Pro",
           "State-of-the-art prompt adherence and typography", _IMG,
           Capability.GUIDANCE, Capability.SAFETY_TOLERANCE),
    _model("ideogram_v3", "fal-ai/ideogram/v3", "Ideogram V3",
           "Advanced typography and realistic outputs", _IMG,
           Capability.NEGATIVE_PROMPT),
    _model("recraft_v3", "fal-ai/recraft/v3/text-to-image", "Recraft V3",
           "Professional design and illustration", _IMG),
    _model("stable_diffusion_35", "fal-ai/stable-diffusion-v35-large", "Stable Diffusion 3.5 Large",
           "Improved image quality and performance", _IMG,
           Capability.GUIDANCE, Capability.NEGATIVE_PROMPT),
    _model("flux_dev", "fal-ai/flux/dev", "FLUX Dev",
           "High-quality 12B parameter model", _IMG,
           Capability.GUIDANCE),
    _model("hidream", "fal-ai/hidream-i1-full", "HiDream I1",
           "High-resolution image generation", _IMG),
    _model("janus", "fal-ai/janus", "Janus",
           "Multimodal understanding and generation", _IMG),
)

TEXT_TO_VIDEO_MODELS: Tuple[ModelDescriptor, ...] = (
    _model("veo3", "fal-ai/veo3", "Veo 3",
           "Google DeepMind's latest with speech and audio", _T2V),
    _model("kling_master_text", "fal-ai/kling-video/v2.1/master/text-to-video", "Kling 2.1 Master",
           "Premium text-to-video with motion fluidity", _T2V),
    _model("pixverse_text", "fal-ai/pixverse/v4.5/text-to-video", "Pixverse V4.5",
           "Advanced text-to-video generation", _T2V),
    _model("magi", "fal-ai/magi", "Magi",
           "Creative video generation", _T2V),
    _model("luma_ray2", "fal-ai/luma-dream-machine/ray-2", "Luma Ray 2",
           "Latest Luma Dream Machine", _T2V),
    _model("wan_pro_text", "fal-ai/wan-pro/text-to-video", "Wan Pro",
           "Professional video effects", _T2V),
    _model("vidu_text", "fal-ai/vidu/q1/text-to-video", "Vidu Q1",
           "High-quality text-to-video", _T2V),
)

IMAGE_TO_VIDEO_MODELS: Tuple[ModelDescriptor, ...] = (
    _model("kling_master_image", "fal-ai/kling-video/v2.1/master/image-to-video", "Kling 2.1 Master I2V",
           "Premium image-to-video conversion", _I2V),
    _model("pixverse_image", "fal-ai/pixverse/v4.5/image-to-video", "Pixverse V4.5 I2V",
           "Advanced image-to-video", _I2V),
    _model("wan_pro_image", "fal-ai/wan-pro/image-to-video", "Wan Pro I2V",
           "Professional image animation", _I2V),
    _model("hunyuan_image", "fal-ai/hunyuan-video-image-to-video", "Hunyuan I2V",
           "Open-source image-to-video", _I2V),
    _model("vidu_image", "fal-ai/vidu/image-to-video", "Vidu I2V",
           "High-quality image animation", _I2V),
    _model("luma_ray2_image", "fal-ai/luma-dream-machine/ray-2/image-to-video", "Luma Ray 2 I2V",
           "Latest Luma image-to-video", _I2V),
)

MODELS_BY_CATEGORY = {
    Category.IMAGE_GENERATION: IMAGE_GENERATION_MODELS,
    Category.TEXT_TO_VIDEO: TEXT_TO_VIDEO_MODELS,
    Category.IMAGE_TO_VIDEO: IMAGE_TO_VIDEO_MODELS,
}

# Tool names not backed by a descriptor; checked before any registry lookup.
LIST_MODELS_TOOL = "list_available_models"
EXECUTE_CUSTOM_TOOL = "execute_custom_model"
SYNTHETIC_TOOLS = (LIST_MODELS_TOOL, EXECUTE_CUSTOM_TOOL)


# ============================================================================
# Lookup
# ============================================================================

def all_models() -> Tuple[ModelDescriptor, ...]:
    """All descriptors in catalog order: image, text-to-video, image-to-video."""
    return IMAGE_GENERATION_MODELS + TEXT_TO_VIDEO_MODELS + IMAGE_TO_VIDEO_MODELS


def models_in(category: Category) -> Tuple[ModelDescriptor, ...]:
    return MODELS_BY_CATEGORY[Category(category)]


def get_model(model_id: str) -> Optional[ModelDescriptor]:
    for model in all_models():
        if model.id == model_id:
            return model
    return None


def resolve(tool_name: str) -> ModelDescriptor:
    """Return the descriptor for ``tool_name`` or raise ``NotFoundError``."""
    model = get_model(tool_name)
    if model is None:
        raise NotFoundError(f"Unknown model: {tool_name}", tool=tool_name)
    return model
