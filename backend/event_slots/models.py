from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String

# SQLite only autoincrements INTEGER primary keys.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("code", name="uq_events_code"),
        CheckConstraint("day_count >= 1", name="chk_events_day_count"),
        CheckConstraint(
            "max_slots_per_day IS NULL OR max_slots_per_day >= 1",
            name="chk_events_max_slots_per_day",
        ),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_label: Mapped[str] = mapped_column(String(255), nullable=False)
    day_count: Mapped[int] = mapped_column(Integer, nullable=False)
    max_slots_per_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    match_member_id: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slots: Mapped[list["Slot"]] = relationship(back_populates="event")


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("day >= 1", name="chk_slots_day"),
        CheckConstraint("max_capacity >= 0", name="chk_slots_max_capacity"),
        CheckConstraint("registration_count >= 0", name="chk_slots_count_non_negative"),
        CheckConstraint("registration_count <= max_capacity", name="chk_slots_count_le_capacity"),
        Index("idx_slots_event_day", "event_id", "day", "position"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    slot_time: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    registration_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    event: Mapped["Event"] = relationship(back_populates="slots")


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("event_id", "source_reference", name="uq_reg_event_source"),
        Index("idx_reg_event_mobile", "event_id", "mobile_number"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    source_reference: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    member_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    country_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    mobile_number: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slots: Mapped[list["RegistrationSlot"]] = relationship(
        back_populates="registration",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def days(self) -> dict[int, list[int]]:
        """Stored selection grouped by day, slot ids ascending."""
        grouped: dict[int, list[int]] = {}
        for link in self.slots:
            grouped.setdefault(link.day, []).append(link.slot_id)
        return {day: sorted(ids) for day, ids in sorted(grouped.items())}


class RegistrationSlot(Base):
    __tablename__ = "registration_slots"
    __table_args__ = (
        UniqueConstraint("registration_id", "slot_id", name="uq_reg_slot"),
        Index("idx_reg_slot_slot", "slot_id"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)

    registration: Mapped["Registration"] = relationship(back_populates="slots")


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (UniqueConstraint("event_id", "mobile_number", name="uq_waitlist_event_mobile"),)

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    member_id: Mapped[str] = mapped_column(String(64), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
