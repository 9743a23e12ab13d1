"""Model route guards: video jobs only ever go to a video model."""

from photobooth.core.errors import ValidationError

VIDEO_PREFIX = "seedance-"


def is_valid_video_model(model: str) -> bool:
    return model.startswith(VIDEO_PREFIX)


def assert_video_model(model: str) -> None:
    if not model or not is_valid_video_model(model):
        raise ValidationError(f"Invalid Video Model: {model}. Must start with '{VIDEO_PREFIX}'.")


def sanitize_log(text: str | None, max_length: int = 50) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "...[truncated]"
