"""API for company identity (declarant for fiscal exports)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.company.schemas import CompanyResponse, CompanyUpdate
from src.core.company.service import get_company, update_company
from src.core.database.session import get_db
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/company", tags=["Company"])


@router.get("", response_model=ApiResponse[CompanyResponse])
async def get_company_identity(db: AsyncSession = Depends(get_db)):
    """Get company identity (name, NIF, IBAN, BIC, address)."""
    row = await get_company(db)
    await db.commit()
    return ApiResponse(success=True, data=CompanyResponse.model_validate(row))


@router.put("", response_model=ApiResponse[CompanyResponse])
async def put_company_identity(data: CompanyUpdate, db: AsyncSession = Depends(get_db)):
    """Update company identity."""
    row = await update_company(db, data)
    await db.commit()
    return ApiResponse(success=True, message="Company updated", data=CompanyResponse.model_validate(row))
