import io
import tarfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from httpx import AsyncClient
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.company.models import Company
from src.core.config import settings
from src.core.database.base import Base
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.backups import service as backups
from src.modules.backups.models import Backup, BackupStatus
from src.modules.employees.models import ContractTerm, Employee
from src.modules.enrollments.models import (
    Classroom,
    Enrollment,
    EnrollmentGuardian,
    Guardian,
    SchoolPeriod,
    SchoolPeriodSegment,
    Service,
    Student,
    enrollment_services,
)
from src.modules.invoices.models import Invoice
from src.modules.invoices.service import InvoiceService


@pytest.fixture(autouse=True)
def backup_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Backups and uploads under a temporary folder."""
    monkeypatch.setattr(settings, "backups_path", str(tmp_path / "backups"))
    monkeypatch.setattr(settings, "storage_path", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "s3_bucket", "")
    return tmp_path


async def _seed(db_session: AsyncSession) -> dict:
    db_session.add(Company(name="Colegio Sol", nif="B12345678"))
    student = Student(name="Lucía", lastname="García")
    guardian = Guardian(name="Ana", lastname="López", iban="ES7620770024003102575766")
    classroom = Classroom(name="1A")
    period = SchoolPeriod(
        title="Curso 2023-2024",
        segments=[SchoolPeriodSegment(position=0, start=date(2024, 1, 15), end=date(2024, 6, 30))],
    )
    comedor = Service(title="Comedor", amount=Decimal("120.00"))
    db_session.add_all([student, guardian, classroom, period, comedor])
    await db_session.flush()
    enrollment = Enrollment(
        student_id=student.id,
        classroom_id=classroom.id,
        school_period_id=period.id,
        additional_amount={"Material extra": 15},
        guardian_links=[EnrollmentGuardian(guardian_id=guardian.id, position=0)],
        services=[comedor],
    )
    employee = Employee(
        name="Marta",
        lastname="Ruiz",
        terms=[ContractTerm(position=0, title="2024", hourly_rate=Decimal("10"), worked_hours=Decimal("160"))],
    )
    db_session.add_all([enrollment, employee])
    await db_session.flush()
    invoice = await InvoiceService(db_session).create_invoice(
        {
            "category": "enrollment",
            "enrollment": enrollment.id,
            "amounts": {"Comedor": 120, "Material extra": 15},
            "emission_date": date(2024, 3, 25),
            "expiration_date": date(2024, 3, 31),
        }
    )
    await db_session.commit()
    return {
        "student": student.document_id,
        "student_id": student.id,
        "guardian": guardian.document_id,
        "enrollment": enrollment.document_id,
        "employee": employee.document_id,
        "service": comedor.document_id,
        "invoice": invoice.document_id,
    }


async def _wipe(db_session: AsyncSession) -> None:
    """Empty every table except the backups index."""
    for table in reversed(Base.metadata.sorted_tables):
        if table.name != "backups":
            await db_session.execute(delete(table))
    await db_session.commit()
    db_session.expunge_all()


async def _by_document(db_session: AsyncSession, model, document_id: str):
    result = await db_session.execute(select(model).where(model.document_id == document_id))
    return result.scalar_one()


class TestCreateBackup:
    """Archive contents and index."""

    async def test_archive_layout(self, db_session: AsyncSession, backup_dirs: Path):
        await _seed(db_session)
        upload = backup_dirs / "uploads" / "sepa" / "batch.zip"
        upload.parent.mkdir(parents=True)
        upload.write_bytes(b"zip")

        backup = await backups.create_backup(db_session, description="before March")
        await db_session.commit()

        path = Path(backup.file_path)
        assert path.parent == (backup_dirs / "backups").resolve()
        assert backup.filename.startswith("backup-") and backup.filename.endswith(".tar.gz")
        assert backup.size == path.stat().st_size
        assert backup.status == BackupStatus.COMPLETED
        assert backup.metadata_["counts"]["students"] == 1
        assert "backups" not in backup.metadata_["tables"]
        assert "billing_run_locks" not in backup.metadata_["tables"]

        with tarfile.open(str(path), "r:gz") as tar:
            names = set(tar.getnames())
        assert {"manifest.json", "data/students.json", "data/invoices.json", "assets/uploads/sepa/batch.zip"} <= names

    async def test_list_and_get(self, db_session: AsyncSession):
        first = await backups.create_backup(db_session)
        second = await backups.create_backup(db_session)
        await db_session.commit()

        listed = await backups.list_backups(db_session)
        assert {b.document_id for b in listed} == {first.document_id, second.document_id}
        assert (await backups.get_backup(db_session, first.document_id)).id == first.id
        with pytest.raises(NotFoundError):
            await backups.get_backup(db_session, "missing")


class TestRestoreBackup:
    """Two-pass restore by document id."""

    async def test_restore_into_empty_store(self, db_session: AsyncSession, backup_dirs: Path):
        docs = await _seed(db_session)
        upload = backup_dirs / "uploads" / "notes.txt"
        upload.parent.mkdir(parents=True)
        upload.write_bytes(b"hello")
        backup = await backups.create_backup(db_session)
        await db_session.commit()
        backup_doc = backup.document_id

        await _wipe(db_session)
        upload.unlink()
        # Occupies the old student id so the restored one gets a new id
        db_session.add(Student(name="Otro"))
        await db_session.commit()

        result = await backups.restore_backup(db_session, document_id=backup_doc)
        await db_session.commit()

        assert result.imported >= 8
        assert result.updated == 0
        assert result.unresolved_relations == 0
        assert "execution_logs" in result.skipped_tables

        student = await _by_document(db_session, Student, docs["student"])
        assert student.id != docs["student_id"]
        enrollment = await _by_document(db_session, Enrollment, docs["enrollment"])
        assert enrollment.student_id == student.id
        assert enrollment.additional_amount == {"Material extra": 15}

        guardian = await _by_document(db_session, Guardian, docs["guardian"])
        links = (
            await db_session.execute(
                select(EnrollmentGuardian).where(EnrollmentGuardian.enrollment_id == enrollment.id)
            )
        ).scalars().all()
        assert [link.guardian_id for link in links] == [guardian.id]

        service = await _by_document(db_session, Service, docs["service"])
        services = (await db_session.execute(select(enrollment_services))).all()
        assert [(r.enrollment_id, r.service_id) for r in services] == [(enrollment.id, service.id)]

        employee = await _by_document(db_session, Employee, docs["employee"])
        terms = (
            await db_session.execute(select(ContractTerm).where(ContractTerm.employee_id == employee.id))
        ).scalars().all()
        assert [(t.title, t.hourly_rate) for t in terms] == [("2024", Decimal("10.00"))]

        invoice = await _by_document(db_session, Invoice, docs["invoice"])
        assert invoice.enrollment_id == enrollment.id
        assert invoice.total == Decimal("135.00")
        assert invoice.party_snapshot["student"]["name"] == "Lucía"

        assert upload.read_bytes() == b"hello"

    async def test_restore_over_existing_updates(self, db_session: AsyncSession):
        docs = await _seed(db_session)
        backup = await backups.create_backup(db_session)
        await db_session.commit()

        student = await _by_document(db_session, Student, docs["student"])
        student.name = "Cambiado"
        await db_session.commit()

        result = await backups.restore_backup(db_session, document_id=backup.document_id)
        await db_session.commit()
        db_session.expunge_all()

        assert result.imported == 0
        assert result.updated >= 8
        assert (await _by_document(db_session, Student, docs["student"])).name == "Lucía"

    async def test_prune_only_when_requested(self, db_session: AsyncSession):
        await _seed(db_session)
        backup = await backups.create_backup(db_session)
        extra = Student(name="Nuevo")
        db_session.add(extra)
        await db_session.commit()
        extra_doc = extra.document_id

        result = await backups.restore_backup(db_session, document_id=backup.document_id)
        await db_session.commit()
        assert result.pruned == 0
        assert (await _by_document(db_session, Student, extra_doc)).name == "Nuevo"

        result = await backups.restore_backup(
            db_session, document_id=backup.document_id, prune_missing=True, prune_tables=["students"]
        )
        await db_session.commit()
        db_session.expunge_all()
        assert result.pruned == 1
        remaining = (await db_session.execute(select(Student.document_id))).scalars().all()
        assert extra_doc not in remaining

    async def test_unknown_prune_table(self, db_session: AsyncSession):
        backup = await backups.create_backup(db_session)
        await db_session.commit()
        with pytest.raises(ValidationError):
            await backups.restore_backup(
                db_session, document_id=backup.document_id, prune_missing=True, prune_tables=["nope"]
            )

    async def test_checksum_mismatch(self, db_session: AsyncSession):
        backup = await backups.create_backup(db_session)
        await db_session.commit()
        with open(backup.file_path, "ab") as f:
            f.write(b"tampered")
        with pytest.raises(ValidationError):
            await backups.restore_backup(db_session, document_id=backup.document_id)

    async def test_restore_from_path(self, db_session: AsyncSession, backup_dirs: Path):
        content = io.BytesIO()
        with tarfile.open(fileobj=content, mode="w:gz") as tar:
            data = b'{"version": 1, "files": {"data": {}}}'
            info = tarfile.TarInfo("manifest.json")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        path = backup_dirs / "external.tar.gz"
        path.write_bytes(content.getvalue())

        result = await backups.restore_backup(db_session, path=path)
        assert result.imported == 0

        (backup_dirs / "broken.tar.gz").write_bytes(b"not a tarball")
        with pytest.raises(ValidationError):
            await backups.restore_backup(db_session, path=backup_dirs / "broken.tar.gz")
        with pytest.raises(NotFoundError):
            await backups.restore_backup(db_session, path=backup_dirs / "missing.tar.gz")


class TestSyncBackups:
    """Folder and index reconciliation."""

    async def test_sync(self, db_session: AsyncSession, backup_dirs: Path):
        kept = await backups.create_backup(db_session)
        lost = await backups.create_backup(db_session)
        await db_session.commit()
        Path(lost.file_path).unlink()
        (backup_dirs / "backups" / "manual.tar.gz").write_bytes(b"manual")

        result = await backups.sync_backups_index(db_session)
        await db_session.commit()

        assert result.total_files == 2
        assert result.existing_skips == 1
        assert result.created == 1
        assert result.corrupted_marked == 1
        assert (await backups.get_backup(db_session, lost.document_id)).status == BackupStatus.CORRUPTED
        assert (await backups.get_backup(db_session, kept.document_id)).status == BackupStatus.COMPLETED
        manual = (await db_session.execute(select(Backup).where(Backup.filename == "manual.tar.gz"))).scalar_one()
        assert manual.size == len(b"manual")

    async def test_remove_orphans(self, db_session: AsyncSession, backup_dirs: Path):
        await backups.create_backup(db_session)
        await db_session.commit()
        orphan = backup_dirs / "backups" / "orphan.tar.gz"
        orphan.write_bytes(b"orphan")

        result = await backups.sync_backups_index(db_session, remove_orphan_files=True)

        assert result.created == 0
        assert result.orphan_files_removed == 1
        assert not orphan.exists()


class TestBackupsApi:
    """Backup endpoints."""

    async def test_create_list_download_restore(self, client: AsyncClient, db_session: AsyncSession):
        await _seed(db_session)

        res = await client.post("/api/v1/backups", json={"description": "manual"})
        assert res.status_code == 201
        backup = res.json()["data"]
        assert backup["description"] == "manual"
        assert backup["manifest"]["counts"]["invoices"] == 1

        res = await client.get("/api/v1/backups")
        assert [b["document_id"] for b in res.json()["data"]] == [backup["document_id"]]

        res = await client.get(f"/api/v1/backups/{backup['document_id']}/download")
        assert res.status_code == 200
        assert res.headers["content-type"] == "application/gzip"
        assert len(res.content) == backup["size"]

        res = await client.post(f"/api/v1/backups/{backup['document_id']}/restore", json={})
        assert res.status_code == 200
        assert res.json()["data"]["pruned"] == 0

        res = await client.post("/api/v1/backups/sync", json={})
        assert res.json()["data"]["existing_skips"] == 1

    async def test_unknown_backup(self, client: AsyncClient):
        res = await client.get("/api/v1/backups/missing/download")
        assert res.status_code == 404
