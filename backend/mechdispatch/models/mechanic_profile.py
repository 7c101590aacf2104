import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mechdispatch.database import Base
from mechdispatch.models.types import GUID


class MechanicProfile(Base):
    __tablename__ = "mechanic_profiles"
    __table_args__ = (
        CheckConstraint("rating_avg >= 0 AND rating_avg <= 5", name="ck_mechanic_rating_avg_range"),
        CheckConstraint("total_jobs >= 0", name="ck_mechanic_total_jobs_positive"),
        CheckConstraint("total_ratings >= 0", name="ck_mechanic_total_ratings_positive"),
        Index("ix_mechanic_lat_lng", "latitude", "longitude"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    specialty: Mapped[str] = mapped_column(String(50), nullable=False, default="All")
    # A NULL price means the mechanic does not offer that tier.
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    monthly_subscription: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    yearly_subscription: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Full precision running average; rounded to one decimal only when serialised.
    rating_avg: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="mechanic_profile", lazy="raise")
