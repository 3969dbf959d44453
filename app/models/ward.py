# File: app/models/ward.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base

class Ward(Base):
    __tablename__ = "wards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    zone: Mapped[str | None] = mapped_column(String(120), nullable=True)

    officer_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    officer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    officer_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # GeoJSON geometry (Polygon or MultiPolygon, lon/lat order)
    boundary: Mapped[dict] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
