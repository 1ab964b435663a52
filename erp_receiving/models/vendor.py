"""Vendor model (read-mostly lookup owned by procurement)."""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from erp_receiving.database import Base
from erp_receiving.db_types import UUIDType


class Vendor(Base):
    """Supplier of purchased materials."""
    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    vendor_code: Mapped[Optional[str]] = mapped_column(
        String(30),
        unique=True,
        nullable=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Vendor(name='{self.name}')>"
