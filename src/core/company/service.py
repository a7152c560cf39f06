"""Service for the company singleton."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.company.models import Company
from src.core.company.schemas import CompanyUpdate
from src.core.exceptions import ValidationError


async def find_company(db: AsyncSession) -> Company | None:
    """Return the company row if configured (no side effects)."""
    result = await db.execute(select(Company).order_by(Company.id).limit(1))
    return result.scalar_one_or_none()


async def get_company(db: AsyncSession) -> Company:
    """Get the single company row; create an empty one if missing."""
    row = await find_company(db)
    if row is None:
        row = Company(name="")
        db.add(row)
        await db.flush()
        await db.refresh(row)
    return row


async def require_declarant(db: AsyncSession) -> Company:
    """Company with a tax id. Fiscal exports cannot run without it."""
    row = await find_company(db)
    if row is None or not (row.nif or "").strip():
        raise ValidationError("Company identity with NIF is required for fiscal exports", field="nif")
    return row


async def update_company(db: AsyncSession, data: CompanyUpdate) -> Company:
    """Update company identity (only provided fields)."""
    row = await get_company(db)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(row, key, value)
    await db.flush()
    await db.refresh(row)
    return row
