"""API endpoints for backups."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.backups import service
from src.modules.backups.models import Backup
from src.modules.backups.schemas import (
    BackupCreate,
    BackupResponse,
    RestoreRequest,
    RestoreResult,
    SyncRequest,
    SyncResult,
)
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/backups", tags=["Backups"])


def _backup_to_response(backup: Backup) -> BackupResponse:
    return BackupResponse(
        id=backup.id,
        document_id=backup.document_id,
        created_at=backup.created_at,
        updated_at=backup.updated_at,
        filename=backup.filename,
        file_path=backup.file_path,
        checksum=backup.checksum,
        size=backup.size,
        status=backup.status,
        backup_type=backup.backup_type,
        description=backup.description,
        manifest=backup.metadata_,
    )


@router.get("", response_model=ApiResponse[list[BackupResponse]])
async def list_backups(db: AsyncSession = Depends(get_db)):
    """List indexed backups, newest first."""
    backups = await service.list_backups(db)
    return ApiResponse(success=True, data=[_backup_to_response(b) for b in backups])


@router.post("", response_model=ApiResponse[BackupResponse], status_code=status.HTTP_201_CREATED)
async def create_backup(data: BackupCreate, db: AsyncSession = Depends(get_db)):
    """Create a full backup archive."""
    backup = await service.create_backup(db, description=data.description)
    await db.commit()
    await db.refresh(backup)
    return ApiResponse(success=True, message="Backup created", data=_backup_to_response(backup))


@router.post("/sync", response_model=ApiResponse[SyncResult])
async def sync_backups(data: SyncRequest, db: AsyncSession = Depends(get_db)):
    """Reconcile the backups folder with the index."""
    result = await service.sync_backups_index(
        db,
        mark_missing_as_corrupted=data.mark_missing_as_corrupted,
        remove_orphan_files=data.remove_orphan_files,
    )
    await db.commit()
    return ApiResponse(success=True, message="Backups index synced", data=result)


@router.get("/{document_id}/download")
async def download_backup(document_id: str, db: AsyncSession = Depends(get_db)):
    """Download a backup archive."""
    backup = await service.get_backup(db, document_id)
    content = service.read_backup_file(backup)
    return Response(
        content=content,
        media_type="application/gzip",
        headers={"Content-Disposition": f'attachment; filename="{backup.filename}"'},
    )


@router.post("/{document_id}/restore", response_model=ApiResponse[RestoreResult])
async def restore_backup(document_id: str, data: RestoreRequest, db: AsyncSession = Depends(get_db)):
    """Restore a backup. Rows missing from it are only deleted with ``prune_missing``."""
    result = await service.restore_backup(
        db,
        document_id=document_id,
        prune_missing=data.prune_missing,
        prune_tables=data.prune_tables,
    )
    await db.commit()
    return ApiResponse(success=True, message="Backup restored", data=result)
