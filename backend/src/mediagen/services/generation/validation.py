"""Submission input validation.

Validates prompt, mode and auxiliary inputs before any credit is spent.
"""

from urllib.parse import urlparse

from mediagen.models.generation_job import GenerationMode
from mediagen.services.exceptions import ValidationError
from mediagen.services.generation.modes import ModeSpec

MAX_PROMPT_LENGTH = 2000


def validate_prompt(prompt: str) -> str:
    """Validate prompt text.

    Args:
        prompt: Text prompt from the requesting user

    Returns:
        Prompt with surrounding whitespace removed

    Raises:
        ValidationError: If prompt is empty, not a string, or too long
    """
    if not isinstance(prompt, str):
        raise ValidationError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValidationError("Prompt cannot be empty")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt


def validate_mode(mode: str | GenerationMode, catalogue: dict[GenerationMode, ModeSpec]) -> ModeSpec:
    """Resolve a mode name to its catalogue entry.

    Raises:
        ValidationError: If the mode is unknown
    """
    try:
        resolved = GenerationMode(mode)
    except ValueError:
        known = ", ".join(m.value for m in catalogue)
        raise ValidationError(f"Unknown generation mode {mode!r}. Expected one of: {known}")

    spec = catalogue.get(resolved)
    if spec is None:
        raise ValidationError(f"Generation mode {resolved.value!r} is not enabled")
    return spec


def validate_auxiliary_inputs(spec: ModeSpec, auxiliary_inputs: list[str] | None) -> list[str]:
    """Check that every input slot the mode requires has an http(s) URL.

    Modes without slots accept no auxiliary inputs.

    Raises:
        ValidationError: If a slot is missing/empty or extra inputs are supplied
    """
    inputs = list(auxiliary_inputs or [])

    if len(inputs) != spec.required_inputs:
        if spec.required_inputs == 0:
            raise ValidationError(f"Mode {spec.mode.value!r} does not accept auxiliary inputs")
        raise ValidationError(
            f"Mode {spec.mode.value!r} requires {spec.required_inputs} auxiliary inputs "
            f"({', '.join(spec.input_slots)}), got {len(inputs)}"
        )

    for slot, url in zip(spec.input_slots, inputs):
        if not isinstance(url, str) or not url.strip():
            raise ValidationError(f"Missing URL for input {slot!r}")
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Input {slot!r} must be an http(s) URL, got {url!r}")

    return [url.strip() for url in inputs]
