from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar

from stowqr.models import AssignmentOutcome, EntityType, ItemCondition
from stowqr.services.id_service import IdGenerator, generate_id
from stowqr.services.pool_service import (
    PoolAssignmentConflict,
    PreGeneratedQR,
    assign_entry,
    clear_unassigned,
    delete_entry,
    find_entry,
    generate_pool,
    now_iso,
    release_entries,
    unassigned_entries,
)
from stowqr.services.qr_codec_service import DecodedPayload, decode_payload, generate_entity_payload, is_valid_payload

logger = logging.getLogger(__name__)

UNKNOWN_NAME = 'Unknown'
BREADCRUMB_SEPARATOR = ' > '


class EntityNotFoundError(LookupError):
    def __init__(self, entity_type: EntityType, entity_id: str) -> None:
        super().__init__(f'{entity_type.value.capitalize()} {entity_id} not found')
        self.entity_type = entity_type
        self.entity_id = entity_id


class PayloadInUseError(ValueError):
    def __init__(self, qr_data: str, owner: Entity) -> None:
        super().__init__(f'QR code {qr_data} is already used by {owner.entity_type.value} {owner.id}')
        self.qr_data = qr_data
        self.owner = owner


@dataclass(frozen=True, kw_only=True)
class Entity:
    entity_type: ClassVar[EntityType]
    # (attribute, wire key, required)
    wire_fields: ClassVar[tuple[tuple[str, str, bool], ...]] = ()

    id: str
    name: str
    qr_data: str
    created_at: str
    extra: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        data = {
            **self.extra,
            'id': self.id,
            'name': self.name,
            'qrData': self.qr_data,
            'type': self.entity_type.value,
            'createdAt': self.created_at,
        }
        for attr, key, required in self.wire_fields:
            value = getattr(self, attr)
            if value is None and not required and attr not in self.nullable_fields():
                continue
            data[key] = value.value if isinstance(value, Enum) else value
        return data

    @classmethod
    def nullable_fields(cls) -> set[str]:
        return set()

    @classmethod
    def coerce(cls, attr: str, value):
        return value

    @classmethod
    def from_dict(cls, raw: dict) -> Entity:
        label = cls.entity_type.value
        if not isinstance(raw, dict):
            raise ValueError(f'{label} record must be an object')
        missing = [key for key in ('id', 'name', 'qrData') if not isinstance(raw.get(key), str)]
        missing += [key for _, key, required in cls.wire_fields if required and not isinstance(raw.get(key), str)]
        if missing:
            raise ValueError(f'{label} record is missing {", ".join(missing)}')

        known = {'id', 'name', 'qrData', 'type', 'createdAt'} | {key for _, key, _ in cls.wire_fields}
        kwargs = {attr: cls.coerce(attr, raw[key]) for attr, key, _ in cls.wire_fields if raw.get(key) is not None}
        return cls(
            id=raw['id'],
            name=raw['name'],
            qr_data=raw['qrData'],
            created_at=raw.get('createdAt') or '',
            extra={key: value for key, value in raw.items() if key not in known},
            **kwargs,
        )


@dataclass(frozen=True, kw_only=True)
class Location(Entity):
    entity_type: ClassVar[EntityType] = EntityType.LOCATION
    wire_fields: ClassVar[tuple[tuple[str, str, bool], ...]] = (
        ('icon', 'icon', False),
        ('color', 'color', False),
    )

    icon: str | None = None
    color: str | None = None


@dataclass(frozen=True, kw_only=True)
class Area(Entity):
    entity_type: ClassVar[EntityType] = EntityType.AREA
    wire_fields: ClassVar[tuple[tuple[str, str, bool], ...]] = (('location_id', 'locationId', True),)

    location_id: str


@dataclass(frozen=True, kw_only=True)
class Section(Entity):
    entity_type: ClassVar[EntityType] = EntityType.SECTION
    wire_fields: ClassVar[tuple[tuple[str, str, bool], ...]] = (
        ('location_id', 'locationId', True),
        ('area_id', 'areaId', True),
    )

    location_id: str
    area_id: str


@dataclass(frozen=True, kw_only=True)
class Item(Entity):
    entity_type: ClassVar[EntityType] = EntityType.ITEM
    wire_fields: ClassVar[tuple[tuple[str, str, bool], ...]] = (
        ('location_id', 'locationId', True),
        ('area_id', 'areaId', True),
        ('section_id', 'sectionId', False),
        ('quantity', 'quantity', False),
        ('condition', 'condition', False),
        ('description', 'description', False),
        ('notes', 'notes', False),
    )

    location_id: str
    area_id: str
    section_id: str | None = None
    quantity: int = 1
    condition: ItemCondition = ItemCondition.GOOD
    description: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 0:
            raise ValueError('Quantity must be a whole number of zero or more')

    @classmethod
    def nullable_fields(cls) -> set[str]:
        return {'section_id'}

    @classmethod
    def coerce(cls, attr: str, value):
        if attr == 'condition':
            return ItemCondition(value)
        return value


ENTITY_CLASSES: dict[EntityType, type[Entity]] = {
    EntityType.LOCATION: Location,
    EntityType.AREA: Area,
    EntityType.SECTION: Section,
    EntityType.ITEM: Item,
}
COLLECTIONS: dict[EntityType, str] = {
    EntityType.LOCATION: 'locations',
    EntityType.AREA: 'areas',
    EntityType.SECTION: 'sections',
    EntityType.ITEM: 'items',
}


@dataclass(frozen=True)
class InventoryState:
    locations: tuple[Location, ...] = ()
    areas: tuple[Area, ...] = ()
    sections: tuple[Section, ...] = ()
    items: tuple[Item, ...] = ()
    pool: tuple[PreGeneratedQR, ...] = ()

    def collection(self, entity_type: EntityType | str) -> tuple[Entity, ...]:
        return getattr(self, COLLECTIONS[EntityType(entity_type)])

    def entities(self) -> Iterator[Entity]:
        for entity_type in COLLECTIONS:
            yield from self.collection(entity_type)

    def to_inventory_dict(self) -> dict:
        return {
            name: [entity.to_dict() for entity in self.collection(entity_type)]
            for entity_type, name in COLLECTIONS.items()
        }

    def pool_dicts(self) -> list[dict]:
        return [entry.to_dict() for entry in self.pool]

    @classmethod
    def from_dicts(cls, inventory: dict | None, pool: list | None) -> InventoryState:
        inventory = inventory or {}
        collections = {
            name: tuple(ENTITY_CLASSES[entity_type].from_dict(raw) for raw in inventory.get(name) or [])
            for entity_type, name in COLLECTIONS.items()
        }
        return cls(**collections, pool=tuple(PreGeneratedQR.from_dict(raw) for raw in pool or []))


@dataclass(frozen=True)
class ScanResult:
    payload: str
    decoded: DecodedPayload
    entity: Entity | None = None
    pool_entry: PreGeneratedQR | None = None


@dataclass(frozen=True)
class SearchResult:
    entity: Entity
    breadcrumb: str


def _clean_name(name: str) -> str:
    cleaned = (name or '').strip()
    if not cleaned:
        raise ValueError('Name cannot be empty')
    return cleaned


def find_entity(state: InventoryState, entity_type: EntityType | str, entity_id: str | None) -> Entity | None:
    if entity_id is None:
        return None
    for entity in state.collection(entity_type):
        if entity.id == entity_id:
            return entity
    return None


def get_entity(state: InventoryState, entity_type: EntityType | str, entity_id: str) -> Entity:
    entity = find_entity(state, entity_type, entity_id)
    if entity is None:
        raise EntityNotFoundError(EntityType(entity_type), entity_id)
    return entity


def find_by_payload(state: InventoryState, qr_data: str) -> Entity | None:
    for entity in state.entities():
        if entity.qr_data == qr_data:
            return entity
    return None


def orphaned_entities(state: InventoryState) -> list[Entity]:
    """Entities whose parent references do not resolve to a consistent chain."""
    locations = {location.id for location in state.locations}
    areas = {area.id: area for area in state.areas}
    sections = {section.id: section for section in state.sections}

    def area_ok(location_id: str, area_id: str) -> bool:
        area = areas.get(area_id)
        return location_id in locations and area is not None and area.location_id == location_id

    orphans: list[Entity] = [area for area in state.areas if area.location_id not in locations]
    orphans += [section for section in state.sections if not area_ok(section.location_id, section.area_id)]
    for item in state.items:
        if not area_ok(item.location_id, item.area_id):
            orphans.append(item)
        elif item.section_id is not None:
            section = sections.get(item.section_id)
            if section is None or section.area_id != item.area_id:
                orphans.append(item)
    return orphans


def shared_payloads(state: InventoryState) -> dict[str, list[Entity]]:
    owners: dict[str, list[Entity]] = {}
    for entity in state.entities():
        owners.setdefault(entity.qr_data, []).append(entity)
    return {qr_data: entities for qr_data, entities in owners.items() if len(entities) > 1}


def _put(state: InventoryState, entity: Entity) -> InventoryState:
    name = COLLECTIONS[entity.entity_type]
    current = getattr(state, name)
    if any(existing.id == entity.id for existing in current):
        updated = tuple(entity if existing.id == entity.id else existing for existing in current)
    else:
        updated = (*current, entity)
    return replace(state, **{name: updated})


def _new_entity_fields(
    entity_type: EntityType,
    name: str,
    *,
    prefix: str | None,
    generator: IdGenerator | None,
    now: str | None,
) -> dict:
    cleaned = _clean_name(name)
    return {
        'id': generate_id(generator),
        'name': cleaned,
        'qr_data': generate_entity_payload(entity_type, cleaned, prefix, generator=generator),
        'created_at': now or now_iso(),
    }


def add_location(
    state: InventoryState,
    name: str,
    *,
    icon: str | None = None,
    color: str | None = None,
    prefix: str | None = None,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, Location]:
    location = Location(
        **_new_entity_fields(EntityType.LOCATION, name, prefix=prefix, generator=generator, now=now),
        icon=icon or None,
        color=color or None,
    )
    return _put(state, location), location


def add_area(
    state: InventoryState,
    name: str,
    location_id: str,
    *,
    prefix: str | None = None,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, Area]:
    get_entity(state, EntityType.LOCATION, location_id)
    area = Area(
        **_new_entity_fields(EntityType.AREA, name, prefix=prefix, generator=generator, now=now),
        location_id=location_id,
    )
    return _put(state, area), area


def _check_area_chain(state: InventoryState, location_id: str, area_id: str) -> None:
    get_entity(state, EntityType.LOCATION, location_id)
    area = get_entity(state, EntityType.AREA, area_id)
    if area.location_id != location_id:
        raise ValueError(f'Area {area_id} does not belong to location {location_id}')


def add_section(
    state: InventoryState,
    name: str,
    location_id: str,
    area_id: str,
    *,
    prefix: str | None = None,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, Section]:
    _check_area_chain(state, location_id, area_id)
    section = Section(
        **_new_entity_fields(EntityType.SECTION, name, prefix=prefix, generator=generator, now=now),
        location_id=location_id,
        area_id=area_id,
    )
    return _put(state, section), section


def add_item(
    state: InventoryState,
    name: str,
    location_id: str,
    area_id: str,
    section_id: str | None = None,
    *,
    quantity: int = 1,
    condition: ItemCondition | str = ItemCondition.GOOD,
    description: str | None = None,
    notes: str | None = None,
    prefix: str | None = None,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, Item]:
    _check_area_chain(state, location_id, area_id)
    if section_id is not None:
        section = get_entity(state, EntityType.SECTION, section_id)
        if section.area_id != area_id:
            raise ValueError(f'Section {section_id} does not belong to area {area_id}')
    item = Item(
        **_new_entity_fields(EntityType.ITEM, name, prefix=prefix, generator=generator, now=now),
        location_id=location_id,
        area_id=area_id,
        section_id=section_id,
        quantity=quantity,
        condition=ItemCondition(condition),
        description=(description or '').strip() or None,
        notes=(notes or '').strip() or None,
    )
    return _put(state, item), item


@dataclass(frozen=True)
class BulkItemTemplate:
    name: str
    quantity: int = 1
    condition: ItemCondition = ItemCondition.GOOD


def add_items_bulk(
    state: InventoryState,
    templates: list[BulkItemTemplate],
    location_id: str,
    area_id: str,
    section_id: str | None = None,
    *,
    prefix: str | None = None,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, list[Item]]:
    """Create several items under one parent; rows with a blank name are skipped.

    Either every item is added or none is.
    """
    rows = [template for template in templates if (template.name or '').strip()]
    if not rows:
        raise ValueError('Enter at least one item name')

    created: list[Item] = []
    for template in rows:
        state, item = add_item(
            state,
            template.name,
            location_id,
            area_id,
            section_id,
            quantity=template.quantity,
            condition=template.condition,
            prefix=prefix,
            generator=generator,
            now=now,
        )
        created.append(item)
    logger.info('Bulk added %s items to area %s', len(created), area_id)
    return state, created


def rename_entity(
    state: InventoryState,
    entity_type: EntityType | str,
    entity_id: str,
    name: str,
) -> tuple[InventoryState, Entity]:
    # The payload keeps the name it was printed with.
    entity = replace(get_entity(state, entity_type, entity_id), name=_clean_name(name))
    return _put(state, entity), entity


def customize_location(
    state: InventoryState,
    location_id: str,
    *,
    icon: str | None = None,
    color: str | None = None,
) -> tuple[InventoryState, Location]:
    location = get_entity(state, EntityType.LOCATION, location_id)
    changes = {}
    if icon is not None:
        changes['icon'] = icon or None
    if color is not None:
        changes['color'] = color or None
    location = replace(location, **changes)
    return _put(state, location), location


def update_item_details(
    state: InventoryState,
    item_id: str,
    *,
    quantity: int | None = None,
    condition: ItemCondition | str | None = None,
    description: str | None = None,
    notes: str | None = None,
) -> tuple[InventoryState, Item]:
    item = get_entity(state, EntityType.ITEM, item_id)
    changes: dict = {}
    if quantity is not None:
        changes['quantity'] = quantity
    if condition is not None:
        changes['condition'] = ItemCondition(condition)
    if description is not None:
        changes['description'] = description.strip() or None
    if notes is not None:
        changes['notes'] = notes.strip() or None
    item = replace(item, **changes)
    return _put(state, item), item


def update_entity_qr(
    state: InventoryState,
    entity_type: EntityType | str,
    entity_id: str,
    qr_data: str,
    *,
    release_previous: bool = True,
) -> tuple[InventoryState, AssignmentOutcome]:
    """Point an entity at a new payload and reconcile the pool in one step.

    Nothing is returned until both the entity and the pool are settled, so a
    conflict leaves the caller's state untouched.
    """
    if not is_valid_payload(qr_data):
        raise ValueError('Not a valid inventory QR code')
    entity = get_entity(state, entity_type, entity_id)

    owner = find_by_payload(state, qr_data)
    if owner is not None and owner.id != entity.id:
        logger.warning('Refused QR update for %s: payload already used by %s', entity.id, owner.id)
        raise PayloadInUseError(qr_data, owner)

    pool: list[PreGeneratedQR] = list(state.pool)
    if release_previous and entity.qr_data != qr_data:
        pool = release_entries(pool, {entity.id})
    pool, outcome = assign_entry(pool, qr_data, entity_id=entity.id, entity_type=entity.entity_type)

    updated = _put(state, replace(entity, qr_data=qr_data))
    logger.info('Updated QR for %s %s (%s)', entity.entity_type.value, entity.id, outcome.value)
    return replace(updated, pool=tuple(pool)), outcome


def delete_entity(
    state: InventoryState,
    entity_type: EntityType | str,
    entity_id: str,
    *,
    release_assigned: bool = True,
) -> InventoryState:
    entity_type = EntityType(entity_type)
    get_entity(state, entity_type, entity_id)

    if entity_type == EntityType.LOCATION:
        drop = {
            'locations': lambda e: e.id == entity_id,
            'areas': lambda e: e.location_id == entity_id,
            'sections': lambda e: e.location_id == entity_id,
            'items': lambda e: e.location_id == entity_id,
        }
    elif entity_type == EntityType.AREA:
        drop = {
            'areas': lambda e: e.id == entity_id,
            'sections': lambda e: e.area_id == entity_id,
            'items': lambda e: e.area_id == entity_id,
        }
    elif entity_type == EntityType.SECTION:
        drop = {'sections': lambda e: e.id == entity_id}
    else:
        drop = {'items': lambda e: e.id == entity_id}

    removed: set[str] = set()
    changes: dict = {}
    for name, should_drop in drop.items():
        kept = []
        for entity in getattr(state, name):
            if should_drop(entity):
                removed.add(entity.id)
            else:
                kept.append(entity)
        changes[name] = tuple(kept)

    if entity_type == EntityType.SECTION:
        # Items survive their section and move up to the area.
        changes['items'] = tuple(
            replace(item, section_id=None) if item.section_id == entity_id else item for item in state.items
        )

    if release_assigned:
        changes['pool'] = tuple(release_entries(state.pool, removed))
    logger.info('Deleted %s %s (%s records removed)', entity_type.value, entity_id, len(removed))
    return replace(state, **changes)


def batch_assign_items(
    state: InventoryState,
    qr_codes: list[str],
    item_ids: list[str],
    *,
    release_previous: bool = True,
) -> InventoryState:
    if not qr_codes:
        raise ValueError('Select at least one QR code to assign')
    if len(qr_codes) != len(item_ids):
        raise ValueError(f'Selected {len(qr_codes)} QR codes but {len(item_ids)} items')
    if len(set(qr_codes)) != len(qr_codes) or len(set(item_ids)) != len(item_ids):
        raise ValueError('QR codes and items must not repeat')

    for qr_data in qr_codes:
        entry = find_entry(state.pool, qr_data)
        if entry is None:
            raise ValueError(f'QR code {qr_data} is not a pre-generated code')
        if entry.is_assigned:
            raise PoolAssignmentConflict(qr_data, entry.assigned_to)

    working = state
    for qr_data, item_id in zip(qr_codes, item_ids):
        working, _ = update_entity_qr(working, EntityType.ITEM, item_id, qr_data, release_previous=release_previous)
    logger.info('Batch assigned %s QR codes to items', len(qr_codes))
    return working


def generate_pool_entries(
    state: InventoryState,
    count: int,
    prefix: str | None = None,
    *,
    max_count: int,
    generator: IdGenerator | None = None,
    now: str | None = None,
) -> tuple[InventoryState, list[PreGeneratedQR]]:
    entries = generate_pool(count, prefix, max_count=max_count, generator=generator, now=now)
    return replace(state, pool=(*state.pool, *entries)), entries


def delete_pool_entry(state: InventoryState, qr_data: str) -> InventoryState:
    entry = find_entry(state.pool, qr_data)
    if entry is None:
        raise ValueError(f'QR code {qr_data} is not a pre-generated code')
    if entry.is_assigned:
        raise PoolAssignmentConflict(qr_data, entry.assigned_to)
    return replace(state, pool=tuple(delete_entry(state.pool, qr_data)))


def clear_unassigned_pool(state: InventoryState) -> InventoryState:
    return replace(state, pool=tuple(clear_unassigned(state.pool)))


def unassigned_pool(state: InventoryState) -> list[PreGeneratedQR]:
    return unassigned_entries(state.pool)


def resolve_scan(state: InventoryState, raw: object) -> ScanResult | None:
    if not is_valid_payload(raw):
        return None
    decoded = decode_payload(raw)
    return ScanResult(
        payload=raw,
        decoded=decoded,
        entity=find_by_payload(state, raw),
        pool_entry=find_entry(state.pool, raw),
    )


def areas_by_location(state: InventoryState, location_id: str) -> list[Area]:
    return [area for area in state.areas if area.location_id == location_id]


def sections_by_area(state: InventoryState, area_id: str) -> list[Section]:
    return [section for section in state.sections if section.area_id == area_id]


def items_by_area(state: InventoryState, area_id: str) -> list[Item]:
    return [item for item in state.items if item.area_id == area_id and not item.section_id]


def items_by_section(state: InventoryState, section_id: str) -> list[Item]:
    return [item for item in state.items if item.section_id == section_id]


def fuzzy_match(query: str, text: str) -> bool:
    remaining = iter(text.lower())
    return all(char in remaining for char in query.lower())


def _name_of(state: InventoryState, entity_type: EntityType, entity_id: str | None) -> str:
    entity = find_entity(state, entity_type, entity_id)
    return entity.name if entity else UNKNOWN_NAME


def breadcrumb(state: InventoryState, entity: Entity) -> str:
    parts: list[str] = []
    if isinstance(entity, (Area, Section, Item)):
        parts.append(_name_of(state, EntityType.LOCATION, entity.location_id))
    if isinstance(entity, (Section, Item)):
        parts.append(_name_of(state, EntityType.AREA, entity.area_id))
    if isinstance(entity, Item) and entity.section_id:
        section = find_entity(state, EntityType.SECTION, entity.section_id)
        if section is not None:
            parts.append(section.name)
    parts.append(entity.name)
    return BREADCRUMB_SEPARATOR.join(parts)


def search(state: InventoryState, query: str) -> list[SearchResult]:
    if not query or not query.strip():
        return []
    return [
        SearchResult(entity=entity, breadcrumb=breadcrumb(state, entity))
        for entity in state.entities()
        if fuzzy_match(query, entity.name)
    ]
