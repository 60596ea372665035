"""Helpers for ``data:<mime>;base64,<payload>`` URLs."""

import base64
import binascii
import re

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*?);base64,(?P<payload>.*)$", re.DOTALL)


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def decode_data_url(value: str) -> tuple[str, bytes]:
    """
    Split a base64 data URL into its mime type and raw bytes.

    Raises:
        ValueError: not a base64 data URL, or the payload is not valid base64
    """
    match = _DATA_URL.match(value)
    if not match:
        raise ValueError("Not a base64 data URL")
    mime = match.group("mime") or "application/octet-stream"
    try:
        payload = base64.b64decode(match.group("payload"), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return mime, payload


def encode_data_url(payload: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"
