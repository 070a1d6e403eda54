"""
RevoltBot input validation and sanitization for relay payloads
"""
import json
import re
from typing import Any, Dict, Optional, Union

from .error_handler import ValidationError
from .logging_utils import setup_logger

logger = setup_logger("revoltbot.validation", "logs/revoltbot.log")

MAX_TEXT_LENGTH = 10000
MAX_FRAME_BYTES = 64 * 1024

DANGEROUS_PATTERNS = [
    r'<script[^>]*>.*?</script>',
    r'javascript:',
    r'vbscript:',
    r'<iframe[^>]*>.*?</iframe>',
    r'<object[^>]*>.*?</object>',
    r'<embed[^>]*>.*?</embed>',
]

_COMPILED_PATTERNS = [re.compile(p, re.IGNORECASE | re.DOTALL) for p in DANGEROUS_PATTERNS]
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')


def validate_text_input(text: Any, max_length: Optional[int] = None) -> str:
    """Validate and sanitize a transcript or chat message"""
    if not isinstance(text, str):
        raise ValidationError("Input must be a string", component="validation", operation="text")

    if not text.strip():
        raise ValidationError("Input cannot be empty", component="validation", operation="text")

    if max_length is None:
        max_length = MAX_TEXT_LENGTH

    if len(text) > max_length:
        raise ValidationError(f"Input exceeds maximum length of {max_length} characters",
                              component="validation", operation="text")

    # Until stable; stripping one tag can reassemble another
    sanitized, previous = text, None
    while sanitized != previous:
        previous = sanitized
        for pattern in _COMPILED_PATTERNS:
            sanitized = pattern.sub('', sanitized)
        # Keep newlines and tabs
        sanitized = _CONTROL_CHARS.sub('', sanitized)

    sanitized = sanitized.strip()
    if not sanitized:
        logger.debug("Text input empty after sanitization")
        raise ValidationError("Input cannot be empty", component="validation", operation="text")
    return sanitized


def validate_json_object(data: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """Parse a frame and require a JSON object"""
    if isinstance(data, bytes):
        if len(data) > MAX_FRAME_BYTES:
            raise ValidationError("Frame too large", component="validation", operation="json")
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Frame is not UTF-8: {e}", component="validation", operation="json")

    if isinstance(data, str):
        if len(data) > MAX_FRAME_BYTES:
            raise ValidationError("Frame too large", component="validation", operation="json")
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON format: {e}", component="validation", operation="json")
    elif isinstance(data, dict):
        parsed = data
    else:
        raise ValidationError("Invalid JSON input type", component="validation", operation="json")

    if not isinstance(parsed, dict):
        raise ValidationError("JSON input must be an object", component="validation", operation="json")

    return parsed


__all__ = ["validate_text_input", "validate_json_object", "MAX_TEXT_LENGTH"]
