# File: app/models/resolution_proof.py

from datetime import datetime
from sqlalchemy import Float, String, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base

class ResolutionProof(Base):
    __tablename__ = "resolution_proofs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), unique=True, index=True)
    after_photo_ref: Mapped[str] = mapped_column(String(500))
    officer_lat: Mapped[float] = mapped_column(Float)
    officer_lon: Mapped[float] = mapped_column(Float)
    distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
