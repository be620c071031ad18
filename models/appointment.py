from typing import Optional, TYPE_CHECKING
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func
from .model_enums import AppointmentStatus
from . import Base

if TYPE_CHECKING:
    from .clinic import Patient, StaffAccount

class Appointment(Base):
    '''
    Lifecycle transitions live in services/appointment.py
    Billing fields (is_billed, billed_at, sale_id) are only written by services/billing.py
    '''
    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    specialist_id: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"), index=True)
    receptionist_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_accounts.id"))
    # Specialist actively holding the appointment
    taken_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_accounts.id"))
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    notes: Mapped[Optional[str]]
    status: Mapped[AppointmentStatus] = mapped_column(default=AppointmentStatus.SCHEDULED)
    taken_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Billing
    is_billed: Mapped[bool] = mapped_column(default=False)
    billed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sale_id: Mapped[Optional[int]] # Back-reference to sales.id, no constraint since the sale owns the link

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patient: Mapped["Patient"] = relationship("Patient", foreign_keys=[patient_id])
    specialist: Mapped["StaffAccount"] = relationship("StaffAccount", foreign_keys=[specialist_id])
    receptionist: Mapped[Optional["StaffAccount"]] = relationship("StaffAccount", foreign_keys=[receptionist_id])
    taken_by: Mapped[Optional["StaffAccount"]] = relationship("StaffAccount", foreign_keys=[taken_by_id])

# At most one in-progress appointment per holding specialist
Index(
    "uq_appointments_active_specialist",
    Appointment.taken_by_id,
    unique=True,
    postgresql_where=text("status = 'IN_PROGRESS'"),
    sqlite_where=text("status = 'IN_PROGRESS'"),
)
