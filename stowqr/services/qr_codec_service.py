from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote, unquote

from stowqr.models import EntityType
from stowqr.services.id_service import IdGenerator, generate_id, is_uuid

PREGENERATED = 'pregenerated'
PREGENERATED_CODE = 'PRE'

TYPE_CODES: dict[EntityType, str] = {
    EntityType.LOCATION: 'LOC',
    EntityType.AREA: 'ARE',
    EntityType.SECTION: 'SEC',
    EntityType.ITEM: 'ITE',
}
CODE_TYPES: dict[str, str] = {code: entity_type.value for entity_type, code in TYPE_CODES.items()}
CODE_TYPES[PREGENERATED_CODE] = PREGENERATED

# Same unreserved set as JavaScript's encodeURIComponent.
_NAME_SAFE = "-_.!~*'()"
_BAD_ESCAPE_RE = re.compile(r'%(?![0-9A-Fa-f]{2})')
_PREFIX_RE = re.compile(r'^[\x21-\x39\x3b-\x7e]+$')
# Printed payloads are percent-encoded, so every character is visible ASCII.
_PAYLOAD_RE = re.compile(r'^[\x21-\x7e]+$')


@dataclass(frozen=True)
class DecodedPayload:
    type: str
    id: str
    name: str
    prefix: str | None = None

    @property
    def is_pregenerated(self) -> bool:
        return self.type == PREGENERATED


def normalize_prefix(prefix: str | None) -> str | None:
    if prefix is None:
        return None
    cleaned = prefix.strip()
    if not cleaned:
        return None
    if not _PREFIX_RE.match(cleaned):
        raise ValueError('Prefix must be printable ASCII without spaces or colons')
    return cleaned


def _type_segment(code: str, prefix: str | None) -> str:
    normalized = normalize_prefix(prefix)
    if normalized is None:
        return code
    return f'{normalized}-{code}'


def encode_name(name: str) -> str:
    return quote(name, safe=_NAME_SAFE, encoding='utf-8')


def decode_name(raw: str) -> str | None:
    if _BAD_ESCAPE_RE.search(raw):
        return None
    try:
        return unquote(raw, encoding='utf-8', errors='strict')
    except UnicodeDecodeError:
        return None


def encode_payload(entity_type: EntityType | str, name: str, entity_id: str, prefix: str | None = None) -> str:
    entity_type = EntityType(entity_type)
    return f'{_type_segment(TYPE_CODES[entity_type], prefix)}:{entity_id}:{encode_name(name)}'


def encode_pregenerated_payload(entity_id: str, prefix: str | None = None) -> str:
    return f'{_type_segment(PREGENERATED_CODE, prefix)}:{entity_id}'


def generate_entity_payload(
    entity_type: EntityType | str,
    name: str,
    prefix: str | None = None,
    *,
    generator: IdGenerator | None = None,
) -> str:
    return encode_payload(entity_type, name, generate_id(generator), prefix)


def generate_pregenerated_payload(prefix: str | None = None, *, generator: IdGenerator | None = None) -> str:
    return encode_pregenerated_payload(generate_id(generator), prefix)


def decode_payload(payload: object) -> DecodedPayload | None:
    """Parse a scanned or typed payload.

    Unknown type codes are rejected. Segments after the id are rejoined with
    ':' before percent-decoding so names with literal colons still parse.
    """
    if not isinstance(payload, str):
        return None
    parts = payload.split(':')
    if len(parts) < 2:
        return None

    type_part, entity_id, *name_parts = parts
    prefix: str | None = None
    code = type_part
    if '-' in type_part:
        prefix, code = type_part.rsplit('-', 1)
        prefix = prefix or None

    semantic_type = CODE_TYPES.get(code)
    if semantic_type is None:
        return None

    name = ''
    if name_parts:
        decoded = decode_name(':'.join(name_parts))
        if decoded is None:
            return None
        name = decoded
    return DecodedPayload(type=semantic_type, id=entity_id, name=name, prefix=prefix)


def is_ascii_safe(payload: object) -> bool:
    return isinstance(payload, str) and _PAYLOAD_RE.match(payload) is not None


def is_valid_payload(payload: object) -> bool:
    if not is_ascii_safe(payload):
        return False
    decoded = decode_payload(payload)
    return decoded is not None and is_uuid(decoded.id)
