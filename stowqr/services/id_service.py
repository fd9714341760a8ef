from __future__ import annotations

import logging
import re
import secrets
import uuid
from typing import Protocol

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)


class IdGenerationError(RuntimeError):
    pass


class IdGenerator(Protocol):
    def __call__(self) -> str: ...


def _random_bytes(size: int) -> bytes:
    return secrets.token_bytes(size)


def secure_uuid4() -> str:
    raw = _random_bytes(16)
    if len(raw) != 16:
        raise IdGenerationError(f'Random source returned {len(raw)} bytes, expected 16')
    return str(uuid.UUID(bytes=raw, version=4))


def is_uuid(value: object) -> bool:
    return isinstance(value, str) and UUID_RE.match(value) is not None


def generate_id(generator: IdGenerator | None = None) -> str:
    """Return a fresh lowercase UUIDv4 string.

    Any failure of the underlying source, or output that is not a canonical
    UUID, raises IdGenerationError instead of handing back a placeholder.
    """
    source = generator or secure_uuid4
    try:
        value = source()
    except IdGenerationError:
        logger.warning('Identifier generation failed')
        raise
    except Exception as exc:
        logger.warning('Identifier source raised %s', type(exc).__name__)
        raise IdGenerationError('Identifier source failed') from exc

    if not is_uuid(value):
        logger.warning('Identifier source returned degenerate output: %r', value)
        raise IdGenerationError(f'Identifier source returned invalid value: {value!r}')
    return value.lower()
