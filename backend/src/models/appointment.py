"""
Appointment model representing booked treatment sessions.

Each appointment covers one treatment for one patient on one date. A visit
spanning several treatments is stored as a linked group: every member's
linked_appointment_id points at the first (parent) appointment, which points
at itself, and link_sequence (1-based) orders the members.
"""

from datetime import date as date_type, datetime, time
from typing import Optional
from sqlalchemy import String, Text, ForeignKey, Index, TIMESTAMP, Date, Time
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import DEFAULT_APPOINTMENT_PRIORITY, STATUS_SCHEDULED
from core.database import Base


class Appointment(Base):
    """
    Appointment entity representing one treatment segment of a patient visit.

    Times are clinic-local wall-clock times. An appointment blocks its patient,
    its provider and (unless overlappable) its machine while its status is
    active, i.e. not 'cancelled' or 'no_show'.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment."""

    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"))
    """Reference to the patient who booked this appointment."""

    date: Mapped[date_type] = mapped_column(Date)
    """Date of the appointment."""

    start_time: Mapped[time] = mapped_column(Time)
    """Start time of the appointment."""

    end_time: Mapped[time] = mapped_column(Time)
    """End time of the appointment."""

    treatment_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    """Treatment performed. NULL for legacy rows without treatment data."""

    treatment_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Treatment display name at booking time."""

    duration: Mapped[Optional[int]] = mapped_column(nullable=True)
    """Treatment duration in minutes."""

    machine_id: Mapped[Optional[int]] = mapped_column(ForeignKey("resources.id"), nullable=True)
    """Exclusively assigned machine. NULL when the slot's machine is overlappable."""

    provider_id: Mapped[Optional[int]] = mapped_column(ForeignKey("resources.id"), nullable=True)
    """Assigned provider, if any."""

    status: Mapped[str] = mapped_column(String(50), default=STATUS_SCHEDULED)
    """Lifecycle status. See STATUS_TRANSITIONS in core.constants."""

    priority: Mapped[str] = mapped_column(String(20), default=DEFAULT_APPOINTMENT_PRIORITY)
    """Scheduling priority: 'low', 'normal', 'high' or 'urgent'."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional notes about the appointment."""

    linked_appointment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True
    )
    """Parent appointment id of the linked group (the parent references itself)."""

    link_sequence: Mapped[Optional[int]] = mapped_column(nullable=True)
    """1-based position within the linked group."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the appointment was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the appointment was last updated."""

    __table_args__ = (
        Index('idx_appointments_patient_date', 'patient_id', 'date'),
        Index('idx_appointments_provider_date', 'provider_id', 'date'),
        Index('idx_appointments_machine_date', 'machine_id', 'date'),
        Index('idx_appointments_linked', 'linked_appointment_id'),
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, {self.date} {self.start_time}-{self.end_time})>"
