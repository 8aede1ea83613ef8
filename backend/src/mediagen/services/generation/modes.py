"""Generation mode catalogue: cost, media kind and input slots per mode."""

from dataclasses import dataclass

from mediagen.core.config import Settings
from mediagen.models.generation_job import GenerationMode


@dataclass(frozen=True)
class ModeSpec:
    """Static description of one generation mode."""

    mode: GenerationMode
    media_kind: str  # "image" or "video"; also the storage folder name
    credit_cost: int
    # Backend input names for auxiliary URLs, in submission order
    input_slots: tuple[str, ...] = ()

    @property
    def required_inputs(self) -> int:
        return len(self.input_slots)


def build_mode_catalogue(settings: Settings) -> dict[GenerationMode, ModeSpec]:
    """Build the mode table from settings (credit costs are configurable)."""
    return {
        GenerationMode.IMAGE: ModeSpec(
            mode=GenerationMode.IMAGE,
            media_kind="image",
            credit_cost=settings.credit_cost_image,
        ),
        GenerationMode.VIDEO: ModeSpec(
            mode=GenerationMode.VIDEO,
            media_kind="video",
            credit_cost=settings.credit_cost_video,
        ),
        GenerationMode.FIRST_LAST_FRAME_VIDEO: ModeSpec(
            mode=GenerationMode.FIRST_LAST_FRAME_VIDEO,
            media_kind="video",
            credit_cost=settings.credit_cost_first_last_frame_video,
            input_slots=("start_image", "end_image"),
        ),
    }


def build_backend_inputs(spec: ModeSpec, prompt: str, auxiliary_inputs: list[str]) -> dict:
    """Build the mode-specific input payload for the backend start call.

    Simple modes send only the prompt; paired-image modes add one key per slot.
    """
    inputs: dict = {"prompt": prompt}
    for slot, url in zip(spec.input_slots, auxiliary_inputs):
        inputs[slot] = url
    return inputs
