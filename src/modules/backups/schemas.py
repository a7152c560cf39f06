"""Schemas for backups."""

from typing import Any

from pydantic import BaseModel, Field

from src.shared.schemas.base import BaseSchema, DocumentSchema


class BackupCreate(BaseModel):
    description: str | None = Field(None, max_length=500)


class BackupResponse(DocumentSchema):
    filename: str
    file_path: str
    checksum: str | None = None
    size: int | None = None
    status: str
    backup_type: str
    description: str | None = None
    manifest: dict[str, Any] | None = None


class RestoreRequest(BaseModel):
    """Prune deletes rows missing from the backup; it only happens when asked for."""

    prune_missing: bool = False
    prune_tables: list[str] | None = None


class RestoreResult(BaseSchema):
    imported: int = 0
    updated: int = 0
    pruned: int = 0
    relations_patched: int = 0
    unresolved_relations: int = 0
    child_rows: int = 0
    skipped_tables: list[str] = []


class SyncRequest(BaseModel):
    mark_missing_as_corrupted: bool = True
    remove_orphan_files: bool = False


class SyncResult(BaseSchema):
    created: int = 0
    updated: int = 0
    corrupted_marked: int = 0
    existing_skips: int = 0
    orphan_files_removed: int = 0
    total_files: int = 0
