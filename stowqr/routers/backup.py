from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Response

from stowqr.dependencies import repository, run_mutation
from stowqr.models import RestoreMode
from stowqr.services.backup_service import (
    backup_filename,
    backup_size_estimate,
    backup_summary,
    check_compatibility,
    create_backup,
    dump_backup,
    restore_backup,
)
from stowqr.services.storage_service import InventoryRepository

router = APIRouter(prefix='/backup', tags=['backup'])


@router.get('')
def export_backup(repo: InventoryRepository = Depends(repository)) -> Response:
    backup = create_backup(repo.load())
    return Response(
        content=dump_backup(backup),
        media_type='application/json',
        headers={'Content-Disposition': f'attachment; filename="{backup_filename()}"'},
    )


@router.get('/estimate')
def estimate(repo: InventoryRepository = Depends(repository)) -> dict:
    return {'size': backup_size_estimate(repo.load())}


@router.post('/check')
def check(data: dict = Body(...)) -> dict:
    report = check_compatibility(data)
    result = {
        'version': report.version,
        'compatible': report.compatible,
        'needsMigration': report.needs_migration,
        'warnings': report.warnings,
    }
    if report.compatible:
        summary = backup_summary(data)
        result['summary'] = {
            'locations': summary.locations,
            'areas': summary.areas,
            'sections': summary.sections,
            'items': summary.items,
            'preGeneratedQRs': summary.pre_generated_qrs,
            'exportedAt': summary.exported_at,
        }
    return result


@router.post('/restore')
def restore(
    mode: RestoreMode = RestoreMode.MERGE,
    data: dict = Body(...),
    repo: InventoryRepository = Depends(repository),
) -> dict:
    def change(state):
        restored = restore_backup(state, data, mode)
        return restored, restored

    restored = run_mutation(repo, change)
    return {
        'mode': mode.value,
        'locations': len(restored.locations),
        'areas': len(restored.areas),
        'sections': len(restored.sections),
        'items': len(restored.items),
        'preGeneratedQRs': len(restored.pool),
    }
