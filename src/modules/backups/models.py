"""Backup index model."""

from enum import StrEnum

from sqlalchemy import BigInteger, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class BackupStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CORRUPTED = "corrupted"


class BackupType(StrEnum):
    TAR = "tar"
    OTHER = "other"


class Backup(BaseModel):
    """One archive in ``settings.backups_path``; the files on disk are the source of truth."""

    __tablename__ = "backups"

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BackupStatus.COMPLETED.value)
    backup_type: Mapped[str] = mapped_column(String(20), nullable=False, default=BackupType.TAR.value)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Manifest of the archive (tables, row counts, files)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
