from __future__ import annotations
from typing import Optional
import datetime

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Date, DateTime, Text, ForeignKey, UniqueConstraint

class Base(DeclarativeBase):
    pass

class TariffVersion(Base):
    """One published tariff edition; rows are never edited after publication."""

    __tablename__ = "tariff_versions"

    id: Mapped[int] = mapped_column(primary_key=True)
    version: Mapped[str] = mapped_column(String(64), unique=True)
    effective: Mapped[datetime.date] = mapped_column(Date)
    published_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, default=lambda: datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    )
    source: Mapped[Optional[str]] = mapped_column(String(512))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    rates: Mapped[list["TariffRate"]] = relationship(back_populates="tariff_version", cascade="all, delete-orphan")


class TariffRate(Base):
    __tablename__ = "tariff_rates"
    __table_args__ = (UniqueConstraint("version_id", "scheme", "row_key"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    version_id: Mapped[int] = mapped_column(ForeignKey("tariff_versions.id", ondelete="CASCADE"))
    scheme: Mapped[str] = mapped_column(String(16))    # internal/border
    row_key: Mapped[str] = mapped_column(String(32))   # "<code>" or "<code>:<variant>"

    net_premium: Mapped[int] = mapped_column(Integer)
    stamp_fee: Mapped[int] = mapped_column(Integer)
    war_effort: Mapped[int] = mapped_column(Integer)
    local_administration: Mapped[int] = mapped_column(Integer)
    reconstruction: Mapped[int] = mapped_column(Integer)
    martyr_fund: Mapped[int] = mapped_column(Integer)
    total: Mapped[int] = mapped_column(Integer)
    label: Mapped[Optional[str]] = mapped_column(String(200))

    tariff_version: Mapped[TariffVersion] = relationship(back_populates="rates")
