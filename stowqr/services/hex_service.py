from __future__ import annotations

import re

from stowqr.services.qr_codec_service import is_valid_payload

_WS_RE = re.compile(r'\s+')
_HEX_RE = re.compile(r'^[0-9A-F]*$')
DISPLAY_GROUP = 4


def to_hex(payload: str) -> str:
    codes = []
    for char in payload:
        code = ord(char)
        if code > 0xFF:
            raise ValueError(f'Character {char!r} does not fit in one byte; percent-encode it first')
        codes.append(f'{code:02X}')
    return ''.join(codes)


def clean_hex(value: str) -> str:
    return _WS_RE.sub('', value).upper()


def from_hex(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = clean_hex(value)
    if len(cleaned) % 2 != 0 or not _HEX_RE.match(cleaned):
        return None
    return ''.join(chr(int(cleaned[idx : idx + 2], 16)) for idx in range(0, len(cleaned), 2))


def format_for_display(value: str) -> str:
    cleaned = clean_hex(value)
    return ' '.join(cleaned[idx : idx + DISPLAY_GROUP] for idx in range(0, len(cleaned), DISPLAY_GROUP))


def payload_from_hex(value: object) -> str | None:
    """Decode hand-typed hex and accept it only if it is a valid payload."""
    payload = from_hex(value)
    if payload is None or not is_valid_payload(payload):
        return None
    return payload
