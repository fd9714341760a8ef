from collections.abc import Callable
from typing import TypeVar

from fastapi import HTTPException, status

from stowqr.services.backup_service import BackupVersionError
from stowqr.services.id_service import IdGenerationError
from stowqr.services.inventory_service import EntityNotFoundError, InventoryState, PayloadInUseError
from stowqr.services.pool_service import PoolAssignmentConflict
from stowqr.services.provider_factory import get_repository
from stowqr.services.storage_service import InventoryRepository, StaleWriteError

T = TypeVar('T')


def repository() -> InventoryRepository:
    return get_repository()


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, EntityNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (PoolAssignmentConflict, PayloadInUseError, StaleWriteError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, BackupVersionError):
        return HTTPException(
            status_code=422,
            detail={
                'version': exc.report.version,
                'compatible': exc.report.compatible,
                'warnings': exc.report.warnings,
            },
        )
    if isinstance(exc, IdGenerationError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


SERVICE_ERRORS = (ValueError, LookupError, IdGenerationError, StaleWriteError)


def run_mutation(repo: InventoryRepository, change: Callable[[InventoryState], tuple[InventoryState, T]]) -> T:
    try:
        return repo.mutate(change)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc
