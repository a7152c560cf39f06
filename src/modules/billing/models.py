"""Billing run lock model."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base


class BillingRunLock(Base):
    """
    "Run in progress" marker. One row per lock name while a run holds it;
    an expired row may be taken over by the next runner.
    """

    __tablename__ = "billing_run_locks"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
