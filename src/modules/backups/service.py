"""
Full-store backup and restore.

A backup is a ``tar.gz`` holding ``manifest.json``, one ``data/<table>.json``
per table and a copy of the local uploads under ``assets/uploads/``.

Restore never trusts the numeric ids in the archive. Pass 1 upserts every
row that has a ``document_id`` (without its foreign keys) and records the
old -> new id of each; pass 2 rewrites foreign keys through that map and
re-creates child/association rows. Rows missing from the backup are only
deleted when ``prune_missing`` is requested.
"""

import hashlib
import io
import json
import logging
import secrets
import tarfile
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path, PurePosixPath
from typing import Any

from sqlalchemy import Column, Date, DateTime, Numeric, Table, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import ExecutionEvent, ExecutionLevel, log_execution, new_trace_id
from src.core.config import settings
from src.core.database.base import Base
from src.core.exceptions import NotFoundError, StorageError, ValidationError
from src.modules.backups.models import Backup, BackupStatus, BackupType
from src.modules.backups.schemas import RestoreResult, SyncResult

# Register every table on Base.metadata
import src.core.audit.models  # noqa: F401
import src.core.company.models  # noqa: F401
import src.modules.billing.models  # noqa: F401
import src.modules.employees.models  # noqa: F401
import src.modules.enrollments.models  # noqa: F401
import src.modules.invoices.models  # noqa: F401

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
MANIFEST_NAME = "manifest.json"
ASSETS_PREFIX = "assets/uploads/"
# Never exported: the index itself and transient run state
EXCLUDED_TABLES = {"backups", "billing_run_locks"}


def _tables() -> list[Table]:
    """Backed-up tables in dependency order (parents first)."""
    return [t for t in Base.metadata.sorted_tables if t.name not in EXCLUDED_TABLES]


def _sha256(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _decode(column: Column, value: Any) -> Any:
    """JSON value back into what the column type expects."""
    if value is None:
        return None
    if isinstance(column.type, DateTime) and isinstance(value, str):
        return datetime.fromisoformat(value)
    if isinstance(column.type, Date) and isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(column.type, Numeric) and not isinstance(value, Decimal):
        return Decimal(str(value))
    return value


def _target_table(column: Column) -> str:
    return next(iter(column.foreign_keys)).column.table.name


def _add_bytes(tar: tarfile.TarFile, name: str, content: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    info.mtime = int(mtime)
    tar.addfile(info, io.BytesIO(content))


def _safe_relative(name: str) -> str | None:
    """Relative POSIX path inside the archive, or None if it tries to escape."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        return None
    return path.as_posix()


def _backups_dir() -> Path:
    path = Path(settings.backups_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


async def list_backups(db: AsyncSession) -> list[Backup]:
    result = await db.execute(select(Backup).order_by(Backup.created_at.desc(), Backup.id.desc()))
    return list(result.scalars().all())


async def get_backup(db: AsyncSession, document_id: str) -> Backup:
    result = await db.execute(select(Backup).where(Backup.document_id == document_id))
    backup = result.scalar_one_or_none()
    if backup is None:
        raise NotFoundError("Backup", document_id)
    return backup


def read_backup_file(backup: Backup) -> bytes:
    try:
        return Path(backup.file_path).read_bytes()
    except OSError as e:
        raise StorageError(f"Backup file {backup.filename} is not readable: {e}") from e


async def create_backup(db: AsyncSession, description: str | None = None) -> Backup:
    """Export every table plus local uploads into a new archive and index it."""
    now = datetime.now(timezone.utc)
    filename = f"backup-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3)}.tar.gz"
    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "created_at": now.isoformat(),
        "description": description,
        "tables": [],
        "counts": {},
        "checksums": {},
        "files": {"data": {}, "assets": []},
    }

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for table in _tables():
            rows = (await db.execute(select(table))).mappings().all()
            content = json.dumps(
                [dict(r) for r in rows], default=_json_default, ensure_ascii=False, indent=2
            ).encode("utf-8")
            name = f"data/{table.name}.json"
            _add_bytes(tar, name, content, now.timestamp())
            manifest["tables"].append(table.name)
            manifest["counts"][table.name] = len(rows)
            manifest["checksums"][name] = _sha256(content)
            manifest["files"]["data"][table.name] = name

        uploads = Path(settings.storage_path)
        if not settings.use_s3 and uploads.is_dir():
            for path in sorted(p for p in uploads.rglob("*") if p.is_file()):
                arcname = ASSETS_PREFIX + path.relative_to(uploads).as_posix()
                tar.add(str(path), arcname=arcname)
                manifest["files"]["assets"].append(arcname)

        _add_bytes(
            tar, MANIFEST_NAME, json.dumps(manifest, indent=2).encode("utf-8"), now.timestamp()
        )

    content = buf.getvalue()
    file_path = _backups_dir() / filename
    try:
        file_path.write_bytes(content)
    except OSError as e:
        raise StorageError(f"Could not write backup {filename}: {e}") from e

    backup = Backup(
        filename=filename,
        file_path=str(file_path),
        checksum=_sha256(content),
        size=len(content),
        status=BackupStatus.COMPLETED.value,
        backup_type=BackupType.TAR.value,
        description=description,
        metadata_={k: manifest[k] for k in ("version", "created_at", "tables", "counts")},
    )
    db.add(backup)
    await db.flush()
    await log_execution(
        db,
        title="Backup created",
        message=f"{filename} ({len(content)} bytes, {sum(manifest['counts'].values())} rows)",
        event_type=ExecutionEvent.BACKUP,
        module="backup",
        trace_id=new_trace_id("backup"),
        payload={"filename": filename, "counts": manifest["counts"]},
    )
    logger.info("Backup %s written to %s", filename, file_path)
    return backup


def _read_archive(path: Path) -> tuple[dict, dict[str, list[dict]], list[tuple[str, bytes]]]:
    """``(manifest, rows per table, [(asset path, bytes)])``."""
    try:
        with tarfile.open(str(path), "r:gz") as tar:
            manifest_file = tar.extractfile(MANIFEST_NAME)
            if manifest_file is None:
                raise ValidationError("Backup archive has no manifest")
            manifest = json.loads(manifest_file.read())
            data: dict[str, list[dict]] = {}
            for table_name, name in (manifest.get("files", {}).get("data") or {}).items():
                member = tar.extractfile(name)
                if member is None:
                    continue
                content = member.read()
                expected = (manifest.get("checksums") or {}).get(name)
                if expected and expected != _sha256(content):
                    raise ValidationError(f"Checksum mismatch for {name}")
                rows = json.loads(content)
                if isinstance(rows, list):
                    data[table_name] = rows
            assets = []
            for member in tar.getmembers():
                if not member.isfile() or not member.name.startswith(ASSETS_PREFIX):
                    continue
                relative = _safe_relative(member.name[len(ASSETS_PREFIX):])
                extracted = tar.extractfile(member)
                if relative is None or extracted is None:
                    logger.warning("Skipping unsafe asset path %r in backup", member.name)
                    continue
                assets.append((relative, extracted.read()))
    except (tarfile.TarError, KeyError, json.JSONDecodeError, OSError) as e:
        raise ValidationError(f"Backup archive is unreadable: {e}") from e
    return manifest, data, assets


async def restore_backup(
    db: AsyncSession,
    *,
    document_id: str | None = None,
    path: str | Path | None = None,
    prune_missing: bool = False,
    prune_tables: list[str] | None = None,
) -> RestoreResult:
    """
    Restore an archive by index document id or file path. The caller commits.

    Existing rows with the same ``document_id`` are updated, others created;
    ids are reassigned and every foreign key is rewritten accordingly.
    """
    if document_id is not None:
        backup = await get_backup(db, document_id)
        archive = Path(backup.file_path)
        if backup.checksum and archive.is_file() and _sha256(archive.read_bytes()) != backup.checksum:
            raise ValidationError(f"Backup {backup.filename} does not match its checksum")
    elif path is not None:
        archive = Path(path)
    else:
        raise ValidationError("A backup document id or path is required")
    if not archive.is_file():
        raise NotFoundError("Backup file", str(archive))

    manifest, data, assets = _read_archive(archive)
    tables = {t.name: t for t in _tables()}
    if prune_tables:
        unknown = [name for name in prune_tables if name not in tables]
        if unknown:
            raise ValidationError(f"Unknown tables to prune: {', '.join(unknown)}", field="prune_tables")

    result = RestoreResult(skipped_tables=sorted(name for name in data if name not in tables))
    ordered = [t for t in _tables() if t.name in data]
    id_map: dict[str, dict[int, int]] = {}
    backup_doc_ids: dict[str, set[str]] = {}
    pending: list[tuple[Table, int, dict[str, Any]]] = []

    # Pass 1: entities by document_id, foreign keys left out
    for table in ordered:
        if "document_id" not in table.c:
            continue
        fk_columns = [c for c in table.c if c.foreign_keys]
        table_ids = id_map.setdefault(table.name, {})
        doc_ids = backup_doc_ids.setdefault(table.name, set())
        for row in data[table.name]:
            doc = row.get("document_id")
            if not doc:
                continue
            doc_ids.add(doc)
            values = {
                c.name: _decode(c, row[c.name])
                for c in table.c
                if c.name in row and c.name != "id" and not c.foreign_keys
            }
            existing = (
                await db.execute(select(table.c.id).where(table.c.document_id == doc))
            ).scalar_one_or_none()
            if existing is not None:
                await db.execute(update(table).where(table.c.id == existing).values(**values))
                new_id = existing
                result.updated += 1
            else:
                new_id = (await db.execute(insert(table).values(**values).returning(table.c.id))).scalar_one()
                result.imported += 1
            if row.get("id") is not None:
                table_ids[row["id"]] = new_id
            foreign = {c.name: row.get(c.name) for c in fk_columns}
            if any(v is not None for v in foreign.values()):
                pending.append((table, new_id, foreign))

    # Pass 2: foreign keys through the id map
    for table, new_id, foreign in pending:
        values = {}
        for name, old in foreign.items():
            if old is None:
                continue
            mapped = id_map.get(_target_table(table.c[name]), {}).get(old)
            if mapped is None:
                result.unresolved_relations += 1
                continue
            values[name] = mapped
        if values:
            await db.execute(update(table).where(table.c.id == new_id).values(**values))
            result.relations_patched += len(values)

    # Children and association rows are replaced per owning entity
    for table in ordered:
        if "document_id" in table.c:
            continue
        fk_columns = [c for c in table.c if c.foreign_keys]
        if not fk_columns:
            result.skipped_tables.append(table.name)
            continue
        owner = fk_columns[0]
        drop_id = [c.name for c in table.primary_key.columns] == ["id"]
        new_rows = []
        for row in data[table.name]:
            values = {c.name: _decode(c, row[c.name]) for c in table.c if c.name in row}
            if drop_id:
                values.pop("id", None)
            for column in fk_columns:
                old = values.get(column.name)
                if old is None:
                    continue
                mapped = id_map.get(_target_table(column), {}).get(old)
                if mapped is None:
                    values = None
                    break
                values[column.name] = mapped
            if values is None or values.get(owner.name) is None:
                result.unresolved_relations += 1
                continue
            new_rows.append(values)
        if new_rows:
            owners = {r[owner.name] for r in new_rows}
            await db.execute(delete(table).where(owner.in_(owners)))
            await db.execute(insert(table), new_rows)
            result.child_rows += len(new_rows)

    if prune_missing:
        targets = set(prune_tables or backup_doc_ids)
        for table in reversed(ordered):
            if table.name not in targets or "document_id" not in table.c:
                continue
            keep = backup_doc_ids.get(table.name, set())
            stmt = delete(table)
            if keep:
                stmt = stmt.where(table.c.document_id.not_in(keep))
            deleted = await db.execute(stmt)
            result.pruned += deleted.rowcount or 0

    if assets and not settings.use_s3:
        uploads = Path(settings.storage_path)
        for relative, content in assets:
            target = uploads / relative
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
            except OSError as e:
                raise StorageError(f"Could not restore asset {relative}: {e}") from e

    await db.flush()
    await log_execution(
        db,
        title="Backup restored",
        message=(
            f"{archive.name}: imported={result.imported} updated={result.updated} "
            f"pruned={result.pruned} unresolved={result.unresolved_relations}"
        ),
        event_type=ExecutionEvent.RESTORE,
        level=ExecutionLevel.WARN if result.unresolved_relations else ExecutionLevel.INFO,
        module="backup",
        trace_id=new_trace_id("restore"),
        payload={"file": archive.name, "manifest_version": manifest.get("version"), **result.model_dump()},
    )
    return result


async def sync_backups_index(
    db: AsyncSession,
    mark_missing_as_corrupted: bool = True,
    remove_orphan_files: bool = False,
) -> SyncResult:
    """
    Reconcile the backups folder with the index: index unknown files, mark
    entries whose file disappeared as corrupted and optionally delete files
    nobody indexed. The caller commits.
    """
    folder = _backups_dir()
    files = sorted(p for p in folder.iterdir() if p.is_file() and p.name != ".gitkeep")
    existing = await list_backups(db)
    by_path = {str(Path(b.file_path).resolve()): b for b in existing}
    known_names = {b.filename for b in existing}
    result = SyncResult(total_files=len(files))

    for path in files:
        resolved = str(path.resolve())
        backup = by_path.get(resolved)
        if backup is not None:
            result.existing_skips += 1
            if not backup.size or not backup.checksum:
                content = path.read_bytes()
                backup.size = len(content)
                backup.checksum = _sha256(content)
                result.updated += 1
            continue
        if remove_orphan_files and path.name not in known_names:
            continue
        content = path.read_bytes()
        db.add(
            Backup(
                filename=path.name,
                file_path=resolved,
                checksum=_sha256(content),
                size=len(content),
                status=BackupStatus.COMPLETED.value,
                backup_type=BackupType.TAR.value if path.name.endswith(".tar.gz") else BackupType.OTHER.value,
                description="Synced from backups folder",
                metadata_={"synced_at": datetime.now(timezone.utc).isoformat()},
            )
        )
        result.created += 1

    if mark_missing_as_corrupted:
        for backup in existing:
            if not Path(backup.file_path).exists() and backup.status != BackupStatus.CORRUPTED:
                backup.status = BackupStatus.CORRUPTED.value
                backup.description = "Backup file missing (marked by sync)"
                result.corrupted_marked += 1

    if remove_orphan_files:
        for path in files:
            if path.name in known_names:
                continue
            try:
                path.unlink()
                result.orphan_files_removed += 1
                logger.info("Removed orphan backup file %s", path.name)
            except OSError:
                logger.warning("Could not remove orphan backup file %s", path.name, exc_info=True)

    await db.flush()
    return result
