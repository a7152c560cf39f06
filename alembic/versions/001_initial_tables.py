"""Initial tables: parties, catalog, invoices, execution log, backups

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _document_columns() -> list[sa.Column]:
    """id, document_id and timestamps shared by every entity table."""
    return [
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("document_id", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _document_index(table: str) -> None:
    op.create_index(f"ix_{table}_document_id", table, ["document_id"], unique=True)


def _person_columns() -> list[sa.Column]:
    return [
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("lastname", sa.String(200), nullable=True),
        sa.Column("dni", sa.String(20), nullable=True),
        sa.Column("nif", sa.String(20), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("postcode", sa.String(20), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("iban", sa.String(34), nullable=True),
        sa.Column("bic", sa.String(11), nullable=True),
    ]


def upgrade() -> None:
    # Company (declarant)
    op.create_table(
        "company",
        *_document_columns(),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("nif", sa.String(20), nullable=True),
        sa.Column("iban", sa.String(34), nullable=True),
        sa.Column("bic", sa.String(11), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("creditor_id", sa.String(35), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("company")

    # Parties
    op.create_table(
        "students",
        *_document_columns(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("lastname", sa.String(200), nullable=True),
        sa.Column("dni", sa.String(20), nullable=True),
        sa.Column("birthdate", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("students")
    op.create_index("ix_students_dni", "students", ["dni"])

    op.create_table(
        "guardians",
        *_document_columns(),
        *_person_columns(),
        sa.Column("guardian_type", sa.String(30), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mandate_id", sa.String(35), nullable=True),
        sa.Column("mandate_signed_on", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("guardians")
    op.create_index("ix_guardians_dni", "guardians", ["dni"])

    op.create_table(
        "employees",
        *_document_columns(),
        *_person_columns(),
        sa.Column("role", sa.String(100), nullable=True),
        sa.Column("profession", sa.String(100), nullable=True),
        sa.Column("swift", sa.String(11), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("additional_amount", sa.JSON(), nullable=True),
        sa.Column("billing_control", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("employees")
    op.create_index("ix_employees_dni", "employees", ["dni"])
    op.create_index("ix_employees_is_active", "employees", ["is_active"])

    op.create_table(
        "contract_terms",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("employee_id", sa.BigInteger(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("start", sa.Date(), nullable=True),
        sa.Column("end", sa.Date(), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(15, 2), nullable=True),
        sa.Column("worked_hours", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_period", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("contract_duration", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contract_terms_employee_id", "contract_terms", ["employee_id"])

    # Catalog and school structure
    op.create_table(
        "classrooms",
        *_document_columns(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("classrooms")

    op.create_table(
        "school_periods",
        *_document_columns(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("school_periods")

    op.create_table(
        "school_period_segments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("school_period_id", sa.BigInteger(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start", sa.Date(), nullable=True),
        sa.Column("end", sa.Date(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["school_period_id"], ["school_periods.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_school_period_segments_school_period_id", "school_period_segments", ["school_period_id"]
    )

    op.create_table(
        "services",
        *_document_columns(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("service_status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("service_type", sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("services")
    op.create_index("ix_services_service_status", "services", ["service_status"])

    # Enrollments
    op.create_table(
        "enrollments",
        *_document_columns(),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("student_id", sa.BigInteger(), nullable=True),
        sa.Column("school_period_id", sa.BigInteger(), nullable=True),
        sa.Column("classroom_id", sa.BigInteger(), nullable=True),
        sa.Column("additional_amount", sa.JSON(), nullable=True),
        sa.Column("billing_control", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["school_period_id"], ["school_periods.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["classroom_id"], ["classrooms.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("enrollments")
    op.create_index("ix_enrollments_is_active", "enrollments", ["is_active"])
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])
    op.create_index("ix_enrollments_school_period_id", "enrollments", ["school_period_id"])
    op.create_index("ix_enrollments_classroom_id", "enrollments", ["classroom_id"])

    op.create_table(
        "enrollment_guardians",
        sa.Column("enrollment_id", sa.BigInteger(), nullable=False),
        sa.Column("guardian_id", sa.BigInteger(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guardian_id"], ["guardians.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("enrollment_id", "guardian_id"),
    )
    op.create_table(
        "enrollment_services",
        sa.Column("enrollment_id", sa.BigInteger(), nullable=False),
        sa.Column("service_id", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("enrollment_id", "service_id"),
    )
    op.create_table(
        "enrollment_employees",
        sa.Column("enrollment_id", sa.BigInteger(), nullable=False),
        sa.Column("employee_id", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("enrollment_id", "employee_id"),
    )

    # Invoices
    op.create_table(
        "invoices",
        *_document_columns(),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("invoice_type", sa.String(20), nullable=False, server_default="charge"),
        sa.Column("status", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("amounts", sa.JSON(), nullable=True),
        sa.Column("iva", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("emission_date", sa.Date(), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("enrollment_id", sa.BigInteger(), nullable=True),
        sa.Column("employee_id", sa.BigInteger(), nullable=True),
        sa.Column("guardian_id", sa.BigInteger(), nullable=True),
        sa.Column("party_snapshot", sa.JSON(), nullable=True),
        sa.Column("party_type", sa.String(20), nullable=True),
        sa.Column("party_document_id", sa.String(32), nullable=True),
        sa.Column("enrollment_document_id", sa.String(32), nullable=True),
        sa.Column("employee_document_id", sa.String(32), nullable=True),
        sa.Column("guardian_document_id", sa.String(32), nullable=True),
        sa.Column("snapshot_version", sa.String(10), nullable=True),
        sa.Column("simulation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("simulation_tag", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("issued_by", sa.String(100), nullable=True),
        sa.Column("registered_by", sa.String(20), nullable=False, server_default="administration"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["guardian_id"], ["guardians.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("invoices")
    for column in (
        "category",
        "status",
        "emission_date",
        "expiration_date",
        "enrollment_id",
        "employee_id",
        "guardian_id",
        "party_document_id",
        "enrollment_document_id",
        "employee_document_id",
        "guardian_document_id",
        "simulation",
        "simulation_tag",
    ):
        op.create_index(f"ix_invoices_{column}", "invoices", [column])
    op.create_index("ix_invoices_category_emission", "invoices", ["category", "emission_date"])
    op.create_index("ix_invoices_category_expiration", "invoices", ["category", "expiration_date"])

    # Execution log
    op.create_table(
        "execution_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("module", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.String(100), nullable=False, server_default="system"),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("trace_id", "module", "event_type", "level", "created_at"):
        op.create_index(f"ix_execution_logs_{column}", "execution_logs", [column])

    # Billing run lock
    op.create_table(
        "billing_run_locks",
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    # Backups index
    op.create_table(
        "backups",
        *_document_columns(),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("checksum", sa.String(64), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("backup_type", sa.String(20), nullable=False, server_default="tar"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _document_index("backups")
    op.create_index("ix_backups_file_path", "backups", ["file_path"])


def downgrade() -> None:
    op.drop_table("backups")
    op.drop_table("billing_run_locks")
    op.drop_table("execution_logs")
    op.drop_table("invoices")
    op.drop_table("enrollment_employees")
    op.drop_table("enrollment_services")
    op.drop_table("enrollment_guardians")
    op.drop_table("enrollments")
    op.drop_table("services")
    op.drop_table("school_period_segments")
    op.drop_table("school_periods")
    op.drop_table("classrooms")
    op.drop_table("contract_terms")
    op.drop_table("employees")
    op.drop_table("guardians")
    op.drop_table("students")
    op.drop_table("company")
