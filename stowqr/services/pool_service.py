from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from stowqr.models import AssignmentOutcome, EntityType
from stowqr.services.id_service import IdGenerator
from stowqr.services.qr_codec_service import generate_pregenerated_payload, normalize_prefix

logger = logging.getLogger(__name__)

_POOL_FIELDS = {'qrData', 'prefix', 'createdAt', 'assignedTo', 'assignedType'}


class PoolAssignmentConflict(ValueError):
    def __init__(self, qr_data: str, assigned_to: str) -> None:
        super().__init__(f'QR code {qr_data} is already assigned to {assigned_to}')
        self.qr_data = qr_data
        self.assigned_to = assigned_to


def now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass(frozen=True)
class PreGeneratedQR:
    qr_data: str
    prefix: str | None
    created_at: str
    assigned_to: str | None = None
    assigned_type: EntityType | None = None
    extra: dict = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if (self.assigned_to is None) != (self.assigned_type is None):
            raise ValueError('assignedTo and assignedType must both be set or both be empty')

    @property
    def is_assigned(self) -> bool:
        return self.assigned_to is not None

    def to_dict(self) -> dict:
        return {
            **self.extra,
            'qrData': self.qr_data,
            'prefix': self.prefix,
            'createdAt': self.created_at,
            'assignedTo': self.assigned_to,
            'assignedType': self.assigned_type.value if self.assigned_type else None,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> PreGeneratedQR:
        if not isinstance(raw, dict) or not isinstance(raw.get('qrData'), str):
            raise ValueError('Pre-generated QR entry is missing qrData')
        for key in ('prefix', 'createdAt', 'assignedTo', 'assignedType'):
            if raw.get(key) is not None and not isinstance(raw[key], str):
                raise ValueError(f'Pre-generated QR entry has a non-text {key}')
        assigned_type = raw.get('assignedType')
        return cls(
            qr_data=raw['qrData'],
            prefix=raw.get('prefix') or None,
            created_at=raw.get('createdAt') or '',
            assigned_to=raw.get('assignedTo') or None,
            assigned_type=EntityType(assigned_type) if assigned_type else None,
            extra={key: value for key, value in raw.items() if key not in _POOL_FIELDS},
        )


def validate_pool_count(count: object, max_count: int) -> int:
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError('Count must be a whole number')
    if count < 1:
        raise ValueError('Count must be at least 1')
    if count > max_count:
        raise ValueError(f'Count cannot exceed {max_count}')
    return count


def generate_pool(
    count: int,
    prefix: str | None = None,
    *,
    max_count: int,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> list[PreGeneratedQR]:
    validate_pool_count(count, max_count)
    normalized = normalize_prefix(prefix)
    created_at = now or now_iso()
    entries = [
        PreGeneratedQR(
            qr_data=generate_pregenerated_payload(normalized, generator=generator),
            prefix=normalized,
            created_at=created_at,
        )
        for _ in range(count)
    ]
    logger.info('Generated %s pre-generated QR codes (prefix=%s)', count, normalized)
    return entries


def find_entry(pool: Iterable[PreGeneratedQR], qr_data: str) -> PreGeneratedQR | None:
    for entry in pool:
        if entry.qr_data == qr_data:
            return entry
    return None


def unassigned_entries(pool: Iterable[PreGeneratedQR]) -> list[PreGeneratedQR]:
    return [entry for entry in pool if not entry.is_assigned]


def delete_entry(pool: Iterable[PreGeneratedQR], qr_data: str) -> list[PreGeneratedQR]:
    return [entry for entry in pool if entry.qr_data != qr_data]


def clear_unassigned(pool: Iterable[PreGeneratedQR]) -> list[PreGeneratedQR]:
    return [entry for entry in pool if entry.is_assigned]


def assign_entry(
    pool: list[PreGeneratedQR],
    qr_data: str,
    *,
    entity_id: str,
    entity_type: EntityType,
) -> tuple[list[PreGeneratedQR], AssignmentOutcome]:
    entry = find_entry(pool, qr_data)
    if entry is None:
        return pool, AssignmentOutcome.NOT_IN_POOL
    if entry.is_assigned:
        if entry.assigned_to == entity_id:
            return pool, AssignmentOutcome.ALREADY_ASSIGNED
        logger.warning('Refused to reassign %s from %s to %s', qr_data, entry.assigned_to, entity_id)
        raise PoolAssignmentConflict(qr_data, entry.assigned_to)

    assigned = replace(entry, assigned_to=entity_id, assigned_type=EntityType(entity_type))
    logger.info('Assigned pre-generated QR %s to %s %s', qr_data, assigned.assigned_type.value, entity_id)
    return [assigned if item.qr_data == qr_data else item for item in pool], AssignmentOutcome.ASSIGNED


def release_entries(pool: Iterable[PreGeneratedQR], entity_ids: set[str]) -> list[PreGeneratedQR]:
    released: list[PreGeneratedQR] = []
    for entry in pool:
        if entry.assigned_to in entity_ids:
            logger.info('Released pre-generated QR %s from %s', entry.qr_data, entry.assigned_to)
            entry = replace(entry, assigned_to=None, assigned_type=None)
        released.append(entry)
    return released
