from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from stowqr.config import settings
from stowqr.dependencies import repository, run_mutation
from stowqr.services.hex_service import format_for_display, to_hex
from stowqr.services.inventory_service import (
    batch_assign_items,
    clear_unassigned_pool,
    delete_pool_entry,
    generate_pool_entries,
    unassigned_pool,
)
from stowqr.services.storage_service import InventoryRepository

router = APIRouter(prefix='/pool', tags=['pool'])


class GenerateIn(BaseModel):
    count: int
    prefix: str | None = None


class BatchAssignIn(BaseModel):
    qr_codes: list[str] = Field(alias='qrCodes')
    item_ids: list[str] = Field(alias='itemIds')


def _label(entry) -> dict:
    hex_value = to_hex(entry.qr_data)
    return {**entry.to_dict(), 'hex': hex_value, 'hexDisplay': format_for_display(hex_value)}


@router.get('')
def list_pool(unassigned: bool = False, repo: InventoryRepository = Depends(repository)) -> list[dict]:
    state = repo.load()
    entries = unassigned_pool(state) if unassigned else state.pool
    return [_label(entry) for entry in entries]


@router.post('', status_code=201)
def generate(payload: GenerateIn, repo: InventoryRepository = Depends(repository)) -> list[dict]:
    entries = run_mutation(
        repo,
        lambda state: generate_pool_entries(
            state,
            payload.count,
            payload.prefix,
            max_count=settings.pool_max_count,
        ),
    )
    return [_label(entry) for entry in entries]


@router.post('/batch-assign')
def batch_assign(payload: BatchAssignIn, repo: InventoryRepository = Depends(repository)) -> dict:
    run_mutation(
        repo,
        lambda state: (
            batch_assign_items(
                state,
                payload.qr_codes,
                payload.item_ids,
                release_previous=settings.release_pool_on_delete,
            ),
            None,
        ),
    )
    return {'assigned': len(payload.qr_codes)}


@router.delete('/unassigned')
def clear_unassigned(repo: InventoryRepository = Depends(repository)) -> dict:
    def change(state):
        cleared = clear_unassigned_pool(state)
        return cleared, len(state.pool) - len(cleared.pool)

    return {'removed': run_mutation(repo, change)}


@router.delete('/{qr_data:path}')
def delete_entry(qr_data: str, repo: InventoryRepository = Depends(repository)) -> dict:
    run_mutation(repo, lambda state: (delete_pool_entry(state, qr_data), None))
    return {'deleted': True}
