"""Schemas for recurring billing and simulations."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.shared.schemas.base import BaseSchema


class BillingMode(StrEnum):
    ALL = "all"
    ENROLLMENTS = "enrollments"
    EMPLOYEES = "employees"


class BillingRunRequest(BaseModel):
    """Trigger a billing run. ``now`` overrides the wall clock (tests, catch-up runs)."""

    mode: BillingMode = BillingMode.ALL
    now: datetime | None = None
    # Only bill when the configured schedule says the run is due
    scheduled: bool = False
    last_execution: datetime | None = None


class EntityError(BaseSchema):
    entity: str
    entity_id: int
    document_id: str | None = None
    message: str


class ModeResult(BaseSchema):
    """Outcome of one mode (enrollments or employees) of a run."""

    created: int = 0
    skipped: int = 0
    errors: list[EntityError] = []
    skipped_by_reason: dict[str, int] = {}
    invoice_document_ids: list[str] = []


class BillingRunResult(BaseSchema):
    trace_id: str
    ran: bool = True
    reason: str | None = None
    mode: BillingMode
    billing_date: str
    enrollments: ModeResult | None = None
    employees: ModeResult | None = None
    last_execution: datetime | None = None
    next_execution: datetime | None = None
    duration_ms: int = 0

    @property
    def created(self) -> int:
        return sum(r.created for r in (self.enrollments, self.employees) if r)

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in (self.enrollments, self.employees) if r)

    @property
    def errors(self) -> list[EntityError]:
        return [e for r in (self.enrollments, self.employees) if r for e in r.errors]


class StatusDistribution(BaseModel):
    """Relative weights for the status of simulated invoices."""

    paid: float = Field(0, ge=0)
    unpaid: float = Field(0, ge=0)
    canceled: float = Field(0, ge=0)


class SimulationGenerateRequest(BaseModel):
    year: int = Field(..., ge=1970, le=2100)
    months: list[int] | None = None
    include_enrollments: bool = True
    include_employees: bool = False
    delete_existing: bool = False
    tag: str | None = Field(None, max_length=100)
    status_distribution: StatusDistribution | None = None

    @field_validator("months")
    @classmethod
    def check_months(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return v
        if any(m < 1 or m > 12 for m in v):
            raise ValueError("months must be between 1 and 12")
        return sorted(set(v))


class SimulationMonthResult(BaseSchema):
    period: str
    count: int
    deleted: int = 0


class SimulationGenerateResult(BaseSchema):
    created: list[SimulationMonthResult] = []
    total: int = 0


class SimulationCleanupResult(BaseSchema):
    deleted: int = 0


class SimulationStatusResult(BaseSchema):
    exists: bool = False
    count: int = 0


class ExecutionLogResponse(BaseSchema):
    id: int
    trace_id: str
    title: str
    message: str | None = None
    module: str
    event_type: str
    level: str
    status_code: int | None = None
    duration_ms: int | None = None
    user_id: str
    payload: dict[str, Any] | None = None
    created_at: datetime | None = None
