from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from stowqr.config import settings
from stowqr.dependencies import SERVICE_ERRORS, http_error, repository, run_mutation
from stowqr.models import EntityType, ItemCondition
from stowqr.services.hex_service import format_for_display, payload_from_hex, to_hex
from stowqr.services.inventory_service import (
    BulkItemTemplate,
    InventoryState,
    add_area,
    add_item,
    add_items_bulk,
    add_location,
    add_section,
    areas_by_location,
    customize_location,
    delete_entity,
    get_entity,
    items_by_area,
    items_by_section,
    rename_entity,
    resolve_scan,
    search,
    sections_by_area,
    update_entity_qr,
    update_item_details,
)
from stowqr.services.report_service import inventory_report
from stowqr.services.storage_service import InventoryRepository

router = APIRouter(prefix='/inventory', tags=['inventory'])


class LocationIn(BaseModel):
    name: str
    icon: str | None = None
    color: str | None = None
    prefix: str | None = None


class AreaIn(BaseModel):
    name: str
    location_id: str = Field(alias='locationId')
    prefix: str | None = None


class SectionIn(BaseModel):
    name: str
    location_id: str = Field(alias='locationId')
    area_id: str = Field(alias='areaId')
    prefix: str | None = None


class ItemIn(BaseModel):
    name: str
    location_id: str = Field(alias='locationId')
    area_id: str = Field(alias='areaId')
    section_id: str | None = Field(default=None, alias='sectionId')
    quantity: int = 1
    condition: ItemCondition = ItemCondition.GOOD
    description: str | None = None
    notes: str | None = None
    prefix: str | None = None


class BulkItemRow(BaseModel):
    name: str
    quantity: int = 1
    condition: ItemCondition = ItemCondition.GOOD


class BulkItemsIn(BaseModel):
    location_id: str = Field(alias='locationId')
    area_id: str = Field(alias='areaId')
    section_id: str | None = Field(default=None, alias='sectionId')
    items: list[BulkItemRow]
    prefix: str | None = None


class RenameIn(BaseModel):
    name: str


class LocationStyleIn(BaseModel):
    icon: str | None = None
    color: str | None = None


class ItemDetailsIn(BaseModel):
    quantity: int | None = None
    condition: ItemCondition | None = None
    description: str | None = None
    notes: str | None = None


class QRUpdateIn(BaseModel):
    qr_data: str | None = Field(default=None, alias='qrData')
    hex: str | None = None


class ScanIn(BaseModel):
    raw: str


def _with_label(entity) -> dict:
    data = entity.to_dict()
    hex_value = to_hex(entity.qr_data)
    data['hex'] = hex_value
    data['hexDisplay'] = format_for_display(hex_value)
    return data


@router.get('')
def read_inventory(repo: InventoryRepository = Depends(repository)) -> dict:
    return repo.load().to_inventory_dict()


@router.delete('')
def clear_inventory(repo: InventoryRepository = Depends(repository)) -> dict:
    run_mutation(repo, lambda state: (InventoryState(), None))
    return {'cleared': True}


@router.get('/report')
def read_report(repo: InventoryRepository = Depends(repository)) -> dict:
    return inventory_report(repo.load()).to_dict()


@router.get('/search')
def search_inventory(q: str = '', repo: InventoryRepository = Depends(repository)) -> list[dict]:
    return [
        {'entity': result.entity.to_dict(), 'breadcrumb': result.breadcrumb}
        for result in search(repo.load(), q)
    ]


@router.post('/scan')
def scan(payload: ScanIn, repo: InventoryRepository = Depends(repository)) -> dict:
    result = resolve_scan(repo.load(), payload.raw)
    if result is None:
        return {'valid': False}
    return {
        'valid': True,
        'type': result.decoded.type,
        'id': result.decoded.id,
        'name': result.decoded.name,
        'prefix': result.decoded.prefix,
        'entity': result.entity.to_dict() if result.entity else None,
        'preGenerated': result.pool_entry.to_dict() if result.pool_entry else None,
    }


@router.post('/locations', status_code=201)
def create_location(payload: LocationIn, repo: InventoryRepository = Depends(repository)) -> dict:
    location = run_mutation(
        repo,
        lambda state: add_location(
            state,
            payload.name,
            icon=payload.icon,
            color=payload.color,
            prefix=payload.prefix,
        ),
    )
    return _with_label(location)


@router.post('/areas', status_code=201)
def create_area(payload: AreaIn, repo: InventoryRepository = Depends(repository)) -> dict:
    area = run_mutation(repo, lambda state: add_area(state, payload.name, payload.location_id, prefix=payload.prefix))
    return _with_label(area)


@router.post('/sections', status_code=201)
def create_section(payload: SectionIn, repo: InventoryRepository = Depends(repository)) -> dict:
    section = run_mutation(
        repo,
        lambda state: add_section(state, payload.name, payload.location_id, payload.area_id, prefix=payload.prefix),
    )
    return _with_label(section)


@router.post('/items', status_code=201)
def create_item(payload: ItemIn, repo: InventoryRepository = Depends(repository)) -> dict:
    item = run_mutation(
        repo,
        lambda state: add_item(
            state,
            payload.name,
            payload.location_id,
            payload.area_id,
            payload.section_id,
            quantity=payload.quantity,
            condition=payload.condition,
            description=payload.description,
            notes=payload.notes,
            prefix=payload.prefix,
        ),
    )
    return _with_label(item)


@router.post('/items/bulk', status_code=201)
def create_items_bulk(payload: BulkItemsIn, repo: InventoryRepository = Depends(repository)) -> list[dict]:
    templates = [BulkItemTemplate(name=row.name, quantity=row.quantity, condition=row.condition) for row in payload.items]
    items = run_mutation(
        repo,
        lambda state: add_items_bulk(
            state,
            templates,
            payload.location_id,
            payload.area_id,
            payload.section_id,
            prefix=payload.prefix,
        ),
    )
    return [_with_label(item) for item in items]


@router.get('/{entity_type}/{entity_id}')
def read_entity(entity_type: EntityType, entity_id: str, repo: InventoryRepository = Depends(repository)) -> dict:
    state = repo.load()
    try:
        entity = get_entity(state, entity_type, entity_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc

    data = _with_label(entity)
    if entity_type == EntityType.LOCATION:
        data['areas'] = [area.to_dict() for area in areas_by_location(state, entity_id)]
    elif entity_type == EntityType.AREA:
        data['sections'] = [section.to_dict() for section in sections_by_area(state, entity_id)]
        data['items'] = [item.to_dict() for item in items_by_area(state, entity_id)]
    elif entity_type == EntityType.SECTION:
        data['items'] = [item.to_dict() for item in items_by_section(state, entity_id)]
    return data


@router.patch('/{entity_type}/{entity_id}')
def rename(
    entity_type: EntityType,
    entity_id: str,
    payload: RenameIn,
    repo: InventoryRepository = Depends(repository),
) -> dict:
    entity = run_mutation(repo, lambda state: rename_entity(state, entity_type, entity_id, payload.name))
    return entity.to_dict()


@router.patch('/locations/{location_id}/style')
def restyle_location(
    location_id: str,
    payload: LocationStyleIn,
    repo: InventoryRepository = Depends(repository),
) -> dict:
    location = run_mutation(
        repo,
        lambda state: customize_location(state, location_id, icon=payload.icon, color=payload.color),
    )
    return location.to_dict()


@router.patch('/items/{item_id}/details')
def edit_item_details(
    item_id: str,
    payload: ItemDetailsIn,
    repo: InventoryRepository = Depends(repository),
) -> dict:
    item = run_mutation(
        repo,
        lambda state: update_item_details(
            state,
            item_id,
            quantity=payload.quantity,
            condition=payload.condition,
            description=payload.description,
            notes=payload.notes,
        ),
    )
    return item.to_dict()


@router.put('/{entity_type}/{entity_id}/qr')
def change_qr(
    entity_type: EntityType,
    entity_id: str,
    payload: QRUpdateIn,
    repo: InventoryRepository = Depends(repository),
) -> dict:
    qr_data = payload.qr_data
    if qr_data is None and payload.hex is not None:
        qr_data = payload_from_hex(payload.hex)
        if qr_data is None:
            raise HTTPException(status_code=400, detail='The hex code does not represent a valid QR code')
    if qr_data is None:
        raise HTTPException(status_code=400, detail='Provide qrData or hex')

    def change(state: InventoryState):
        new_state, outcome = update_entity_qr(
            state,
            entity_type,
            entity_id,
            qr_data,
            release_previous=settings.release_pool_on_delete,
        )
        return new_state, (get_entity(new_state, entity_type, entity_id), outcome)

    entity, outcome = run_mutation(repo, change)
    return {**_with_label(entity), 'assignment': outcome.value}


@router.delete('/{entity_type}/{entity_id}')
def remove_entity(entity_type: EntityType, entity_id: str, repo: InventoryRepository = Depends(repository)) -> dict:
    run_mutation(
        repo,
        lambda state: (
            delete_entity(state, entity_type, entity_id, release_assigned=settings.release_pool_on_delete),
            None,
        ),
    )
    return {'deleted': True}
