from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.registry.models import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_full_name", "full_name"),
        Index("idx_customers_phone_primary", "phone_primary"),
        Index("idx_customers_phone_secondary", "phone_secondary"),
        Index("idx_customers_birth_date", "birth_date"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)

    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    national_id: Mapped[str] = mapped_column(String(11), nullable=False, unique=True)  # digits only
    age: Mapped[int] = mapped_column(Integer, nullable=False)

    phone_primary: Mapped[str] = mapped_column(Text, nullable=False)
    phone_secondary: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_note: Mapped[str | None] = mapped_column(Text, nullable=True)  # messaging integration handle

    birth_date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "national_id": self.national_id,
            "age": self.age,
            "phone_primary": self.phone_primary,
            "phone_secondary": self.phone_secondary,
            "external_note": self.external_note,
            "birth_date": self.birth_date,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
