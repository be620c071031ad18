from typing import Optional, List, TYPE_CHECKING
from decimal import Decimal
from datetime import date, datetime
from sqlalchemy import Date, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from .model_enums import PaymentStatus, SaleStatus
from . import Base

if TYPE_CHECKING:
    from .clinic import Patient, PaymentMethod
    from .orders import Order
    from .laboratory import LaboratoryOrder

class Sale(Base):
    '''
    balance, amount_paid and payment_status are derived by services/sales.py from both payment tables
    '''
    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sale_number: Mapped[str] = mapped_column(String, unique=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"), index=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), index=True)
    subtotal: Mapped[Decimal]
    tax: Mapped[Decimal]
    discount: Mapped[Decimal]
    total: Mapped[Decimal]
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    balance: Mapped[Decimal]
    status: Mapped[SaleStatus] = mapped_column(default=SaleStatus.PENDING, index=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(default=PaymentStatus.PENDING, index=True)
    notes: Mapped[Optional[str]]
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    payments: Mapped[List["SalePayment"]] = relationship(back_populates="sale", cascade="all, delete-orphan", order_by="SalePayment.id")
    partial_payments: Mapped[List["PartialPayment"]] = relationship(back_populates="sale", cascade="all, delete-orphan", order_by="PartialPayment.id")
    laboratory_orders: Mapped[List["LaboratoryOrder"]] = relationship(back_populates="sale")
    patient: Mapped["Patient"] = relationship("Patient")
    order: Mapped[Optional["Order"]] = relationship("Order")

class PaymentFact:
    '''
    Shape shared by both payment tracks. Rows are never edited, only added or removed.
    '''
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sale_id: Mapped[int] = mapped_column(ForeignKey("sales.id", ondelete="CASCADE"), index=True)
    payment_method_id: Mapped[int] = mapped_column(ForeignKey("payment_methods.id"))
    amount: Mapped[Decimal]
    reference_number: Mapped[Optional[str]]
    payment_date: Mapped[date] = mapped_column(Date)
    notes: Mapped[Optional[str]]
    created_by: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

class SalePayment(PaymentFact, Base):
    __tablename__ = "sale_payments"

    sale: Mapped["Sale"] = relationship(back_populates="payments")
    payment_method: Mapped["PaymentMethod"] = relationship("PaymentMethod")

class PartialPayment(PaymentFact, Base):
    __tablename__ = "partial_payments"

    sale: Mapped["Sale"] = relationship(back_populates="partial_payments")
    payment_method: Mapped["PaymentMethod"] = relationship("PaymentMethod")
