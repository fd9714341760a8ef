from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from stowqr.models import ItemCondition, RestoreMode
from stowqr.services.inventory_service import COLLECTIONS, InventoryState, orphaned_entities, shared_payloads
from stowqr.services.pool_service import now_iso
from stowqr.services.qr_codec_service import is_ascii_safe

logger = logging.getLogger(__name__)

BACKUP_VERSION = '1.1'
LEGACY_VERSION = '1.0'
INVENTORY_KEYS = tuple(COLLECTIONS.values())


class BackupFormatError(ValueError):
    pass


class BackupVersionError(ValueError):
    def __init__(self, report: CompatibilityReport) -> None:
        super().__init__('; '.join(report.warnings) or 'Backup version is not supported')
        self.report = report


@dataclass(frozen=True)
class CompatibilityReport:
    version: str | None
    compatible: bool
    needs_migration: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BackupSummary:
    locations: int
    areas: int
    sections: int
    items: int
    pre_generated_qrs: int
    exported_at: str


def parse_version(value: object) -> tuple[int, ...] | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parts = tuple(int(part) for part in value.strip().split('.'))
    except ValueError:
        return None
    if any(part < 0 for part in parts):
        return None
    # '1' and '1.0' compare equal.
    while len(parts) > 1 and parts[-1] == 0:
        parts = parts[:-1]
    return parts


def validate_backup(data: object) -> bool:
    if not isinstance(data, dict):
        return False
    if not isinstance(data.get('version'), str):
        return False
    if not isinstance(data.get('exportedAt'), str):
        return False
    inventory = data.get('inventory')
    if not isinstance(inventory, dict):
        return False
    if not all(isinstance(inventory.get(key), list) for key in INVENTORY_KEYS):
        return False
    # Exports from before the pool existed omit the key entirely.
    if 'preGeneratedQRs' in data and not isinstance(data['preGeneratedQRs'], list):
        return False
    return True


def _migrate_1_0_to_1_1(data: dict) -> dict:
    inventory = data['inventory']
    items = []
    for item in inventory['items']:
        if isinstance(item, dict):
            item = {**item}
            item.setdefault('quantity', 1)
            item.setdefault('condition', ItemCondition.GOOD.value)
        items.append(item)
    return {**data, 'inventory': {**inventory, 'items': items}}


MIGRATIONS: list[tuple[str, str, Callable[[dict], dict]]] = [
    (LEGACY_VERSION, BACKUP_VERSION, _migrate_1_0_to_1_1),
]


def check_compatibility(data: object) -> CompatibilityReport:
    if not validate_backup(data):
        return CompatibilityReport(version=None, compatible=False, needs_migration=False, warnings=['Invalid backup file format'])

    version = data['version']
    parsed = parse_version(version)
    current = parse_version(BACKUP_VERSION)
    if parsed is None:
        return CompatibilityReport(
            version=version,
            compatible=False,
            needs_migration=False,
            warnings=[f'Unrecognised backup version {version!r}'],
        )
    if parsed > current:
        return CompatibilityReport(
            version=version,
            compatible=False,
            needs_migration=False,
            warnings=[f'Backup version {version} is newer than supported version {BACKUP_VERSION}; update the app to import it'],
        )
    if parsed < parse_version(LEGACY_VERSION):
        return CompatibilityReport(
            version=version,
            compatible=False,
            needs_migration=False,
            warnings=[f'Backup version {version} predates the oldest supported version {LEGACY_VERSION}'],
        )

    warnings: list[str] = []
    if 'preGeneratedQRs' not in data:
        warnings.append('Backup has no pre-generated QR codes; the pool will be left empty')
    needs_migration = parsed < current
    if needs_migration:
        warnings.append(f'Backup will be upgraded from version {version} to {BACKUP_VERSION}')
    return CompatibilityReport(version=version, compatible=True, needs_migration=needs_migration, warnings=warnings)


def migrate_backup(data: object) -> dict:
    """Bring a snapshot up to BACKUP_VERSION.

    Running it on current data returns an equal copy. Newer or unparseable
    versions raise BackupVersionError; malformed shapes raise BackupFormatError.
    """
    report = check_compatibility(data)
    if report.version is None:
        raise BackupFormatError('Invalid backup file format')
    if not report.compatible:
        logger.warning('Refused backup: %s', '; '.join(report.warnings))
        raise BackupVersionError(report)

    migrated = copy.deepcopy(data)
    migrated.setdefault('preGeneratedQRs', [])
    for from_version, to_version, step in MIGRATIONS:
        # Each step covers [from_version, to_version).
        if parse_version(from_version) <= parse_version(migrated['version']) < parse_version(to_version):
            migrated = step(migrated)
            migrated['version'] = to_version
            logger.info('Migrated backup from %s to %s', from_version, to_version)
    return migrated


def create_backup(state: InventoryState, *, exported_at: str | None = None) -> dict:
    return {
        'version': BACKUP_VERSION,
        'exportedAt': exported_at or now_iso(),
        'inventory': state.to_inventory_dict(),
        'preGeneratedQRs': state.pool_dicts(),
    }


def dump_backup(backup: dict) -> str:
    return json.dumps(backup, indent=2, ensure_ascii=False)


def load_backup(text: str | bytes) -> dict:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise BackupFormatError('Failed to parse backup file') from exc
    if not validate_backup(data):
        raise BackupFormatError('Invalid backup file format')
    return data


def backup_filename(now: datetime | None = None) -> str:
    moment = (now or datetime.now(tz=timezone.utc)).strftime('%Y-%m-%dT%H-%M-%S')
    return f'inventory-backup-{moment}.json'


def backup_summary(data: dict) -> BackupSummary:
    inventory = data['inventory']
    return BackupSummary(
        locations=len(inventory['locations']),
        areas=len(inventory['areas']),
        sections=len(inventory['sections']),
        items=len(inventory['items']),
        pre_generated_qrs=len(data.get('preGeneratedQRs') or []),
        exported_at=data['exportedAt'],
    )


def format_size(size: int) -> str:
    if size < 1024:
        return f'{size} B'
    if size < 1024 * 1024:
        return f'{size / 1024:.1f} KB'
    return f'{size / (1024 * 1024):.1f} MB'


def backup_size_estimate(state: InventoryState) -> str:
    compact = json.dumps(create_backup(state), separators=(',', ':'), ensure_ascii=False)
    return format_size(len(compact.encode('utf-8')))


def _merge_pool(current: tuple, incoming: tuple) -> tuple:
    seen = {entry.qr_data for entry in current}
    merged = list(current)
    for entry in incoming:
        if entry.qr_data in seen:
            continue
        seen.add(entry.qr_data)
        merged.append(entry)
    return tuple(merged)


def _merge_entities(current: tuple, incoming: tuple, payloads: set[str]) -> tuple:
    ids = {record.id for record in current}
    merged = list(current)
    for record in incoming:
        if record.id in ids:
            continue
        if record.qr_data in payloads:
            logger.warning('Skipped restored %s %s: its QR code is already in use', record.entity_type.value, record.id)
            continue
        ids.add(record.id)
        payloads.add(record.qr_data)
        merged.append(record)
    return tuple(merged)


def _check_payloads(incoming: InventoryState) -> None:
    bad = [record.qr_data for record in (*incoming.entities(), *incoming.pool) if not is_ascii_safe(record.qr_data)]
    if bad:
        raise BackupFormatError(f'Backup contains {len(bad)} QR codes that are not printable ASCII')


def _check_integrity(restored: InventoryState) -> None:
    orphans = orphaned_entities(restored)
    if orphans:
        listed = ', '.join(f'{entity.entity_type.value} {entity.id}' for entity in orphans[:5])
        raise BackupFormatError(f'Backup leaves {len(orphans)} records without a valid parent: {listed}')
    shared = shared_payloads(restored)
    if shared:
        raise BackupFormatError(f'Restore leaves {len(shared)} QR codes on more than one record')


def restore_backup(state: InventoryState, data: object, mode: RestoreMode | str) -> InventoryState:
    """Replace or merge live state with a snapshot.

    Records are deduplicated by id (pool entries by qrData) and an incoming
    entity whose payload is already carried by another entity is skipped.
    The result must keep every parent chain intact, otherwise nothing is
    restored.
    """
    mode = RestoreMode(mode)
    migrated = migrate_backup(data)
    try:
        incoming = InventoryState.from_dicts(migrated['inventory'], migrated['preGeneratedQRs'])
    except (KeyError, TypeError, ValueError) as exc:
        raise BackupFormatError(f'Backup contains an invalid record: {exc}') from exc
    _check_payloads(incoming)

    base = InventoryState() if mode == RestoreMode.REPLACE else state
    payloads = {entity.qr_data for entity in base.entities()}
    restored = replace(
        base,
        **{name: _merge_entities(getattr(base, name), getattr(incoming, name), payloads) for name in INVENTORY_KEYS},
        pool=_merge_pool(base.pool, incoming.pool),
    )
    _check_integrity(restored)
    logger.info(
        'Restored backup version %s in %s mode (%s locations, %s items, %s pool entries)',
        migrated['version'],
        mode.value,
        len(restored.locations),
        len(restored.items),
        len(restored.pool),
    )
    return restored
