"""API endpoints for recurring billing, simulations and the execution log."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import clean_old_execution_logs, list_execution_logs
from src.core.config import settings
from src.core.database.session import get_db
from src.modules.billing.config import BillingConfig
from src.modules.billing.schemas import (
    BillingRunRequest,
    BillingRunResult,
    ExecutionLogResponse,
    SimulationCleanupResult,
    SimulationGenerateRequest,
    SimulationGenerateResult,
    SimulationStatusResult,
)
from src.modules.billing.service import BillingService
from src.modules.billing.simulation import SimulationService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/run", response_model=ApiResponse[BillingRunResult])
async def run_billing(data: BillingRunRequest, db: AsyncSession = Depends(get_db)):
    """
    Run recurring billing now.

    With ``scheduled=true`` the run only bills when the configured schedule
    says it is due (given ``last_execution``).
    """
    config = BillingConfig.from_settings(last_execution=data.last_execution)
    service = BillingService(db)
    if data.scheduled:
        result = await service.run_scheduled(now=data.now, mode=data.mode, config=config)
    else:
        result = await service.run(now=data.now, mode=data.mode, config=config)
    message = "Billing run finished" if result.ran else f"Billing run skipped: {result.reason}"
    return ApiResponse(success=True, message=message, data=result)


@router.post("/simulations", response_model=ApiResponse[SimulationGenerateResult])
async def generate_simulations(data: SimulationGenerateRequest, db: AsyncSession = Depends(get_db)):
    """Generate simulation invoices for a year (or some of its months)."""
    service = SimulationService(db, batch_size=settings.billing_batch_size)
    result = await service.generate_year(data)
    return ApiResponse(success=True, message=f"{result.total} simulation invoices created", data=result)


@router.delete("/simulations", response_model=ApiResponse[SimulationCleanupResult])
async def cleanup_simulations(
    year: int | None = Query(None, ge=1970, le=2100),
    tag: str | None = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    """Delete simulation invoices."""
    result = await SimulationService(db).cleanup(year=year, tag=tag)
    return ApiResponse(success=True, message=f"{result.deleted} simulation invoices deleted", data=result)


@router.get("/simulations/status", response_model=ApiResponse[SimulationStatusResult])
async def simulation_status(
    year: int | None = Query(None, ge=1970, le=2100),
    month: int | None = Query(None, ge=1, le=12),
    tag: str | None = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    """Count simulation invoices."""
    result = await SimulationService(db).status(year=year, month=month, tag=tag)
    return ApiResponse(success=True, data=result)


@router.get("/executions", response_model=ApiResponse[PaginatedResponse[ExecutionLogResponse]])
async def list_executions(
    module: str | None = Query(None),
    event_type: str | None = Query(None),
    level: str | None = Query(None),
    trace_id: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Execution log, newest first."""
    items, total = await list_execution_logs(
        db,
        module=module,
        event_type=event_type,
        level=level,
        trace_id=trace_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[ExecutionLogResponse.model_validate(i) for i in items],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.delete("/executions", response_model=ApiResponse[int])
async def clean_executions(
    days_to_keep: int = Query(settings.execution_log_retention_days, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Delete execution entries older than ``days_to_keep`` days."""
    deleted = await clean_old_execution_logs(db, days_to_keep=days_to_keep)
    await db.commit()
    return ApiResponse(success=True, message=f"{deleted} execution entries deleted", data=deleted)
