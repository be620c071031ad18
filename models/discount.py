from typing import Optional, TYPE_CHECKING
from decimal import Decimal
from datetime import date, datetime
from sqlalchemy import Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from .model_enums import DiscountRequestStatus
from . import Base

if TYPE_CHECKING:
    from .catalog import Product
    from .clinic import Patient, StaffAccount

class DiscountRequest(Base):
    '''
    original_price/discounted_price are a snapshot of the product price when the request was made.
    patient_id null means the discount applies to every patient.
    '''
    __tablename__ = "discount_requests"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    patient_id: Mapped[Optional[int]] = mapped_column(ForeignKey("patients.id"), index=True)
    status: Mapped[DiscountRequestStatus] = mapped_column(default=DiscountRequestStatus.PENDING, index=True)
    discount_percentage: Mapped[Decimal]
    original_price: Mapped[Decimal]
    discounted_price: Mapped[Decimal]
    reason: Mapped[Optional[str]]
    rejection_reason: Mapped[Optional[str]]
    approval_notes: Mapped[Optional[str]]
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff_accounts.id"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    is_global: Mapped[bool] = mapped_column(default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product")
    patient: Mapped[Optional["Patient"]] = relationship("Patient")
    user: Mapped["StaffAccount"] = relationship("StaffAccount", foreign_keys=[user_id])
    approver: Mapped[Optional["StaffAccount"]] = relationship("StaffAccount", foreign_keys=[approved_by])

    def is_pending(self):
        return self.status == DiscountRequestStatus.PENDING

    @property
    def applies_to_everyone(self) -> bool:
        return self.patient_id is None or self.is_global
