from typing import Optional, List, TYPE_CHECKING
from datetime import date, datetime
from sqlalchemy import Date, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from .model_enums import LaboratoryOrderPriority, LaboratoryOrderStatus
from . import Base

if TYPE_CHECKING:
    from .clinic import Laboratory, Patient, StaffAccount
    from .orders import Order
    from .payments import Sale

class LaboratoryOrder(Base):
    __tablename__ = "laboratory_orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String, unique=True)
    laboratory_id: Mapped[int] = mapped_column(ForeignKey("laboratories.id"), index=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"))
    # One laboratory order per sale
    sale_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sales.id", ondelete="SET NULL"), unique=True)
    status: Mapped[LaboratoryOrderStatus] = mapped_column(default=LaboratoryOrderStatus.PENDING, index=True)
    priority: Mapped[LaboratoryOrderPriority] = mapped_column(default=LaboratoryOrderPriority.NORMAL)
    estimated_completion_date: Mapped[Optional[date]] = mapped_column(Date)
    completion_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]]
    created_by: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    laboratory: Mapped["Laboratory"] = relationship("Laboratory")
    patient: Mapped["Patient"] = relationship("Patient")
    order: Mapped[Optional["Order"]] = relationship("Order")
    sale: Mapped[Optional["Sale"]] = relationship(back_populates="laboratory_orders")
    status_history: Mapped[List["LaboratoryOrderStatusEntry"]] = relationship(
        back_populates="laboratory_order",
        cascade="all, delete-orphan",
        order_by="LaboratoryOrderStatusEntry.id",
    )

class LaboratoryOrderStatusEntry(Base):
    '''
    Append-only audit trail, one row per status change
    '''
    __tablename__ = "laboratory_order_statuses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    laboratory_order_id: Mapped[int] = mapped_column(ForeignKey("laboratory_orders.id", ondelete="CASCADE"), index=True)
    status: Mapped[LaboratoryOrderStatus]
    notes: Mapped[Optional[str]]
    user_id: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    laboratory_order: Mapped["LaboratoryOrder"] = relationship(back_populates="status_history")
    user: Mapped["StaffAccount"] = relationship("StaffAccount")
