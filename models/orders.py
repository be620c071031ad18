from typing import Optional, List, TYPE_CHECKING
from decimal import Decimal
from datetime import date, datetime
from sqlalchemy import Date, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from .model_enums import OrderStatus, PaymentStatus, QuoteStatus
from . import Base

if TYPE_CHECKING:
    from .catalog import Product
    from .clinic import Patient

class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    quote_number: Mapped[str] = mapped_column(String, unique=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    subtotal: Mapped[Decimal]
    tax: Mapped[Decimal]
    discount: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    total: Mapped[Decimal]
    status: Mapped[QuoteStatus] = mapped_column(default=QuoteStatus.PENDING)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]]
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"))
    created_by: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items: Mapped[List["QuoteItem"]] = relationship(back_populates="quote", cascade="all, delete-orphan", order_by="QuoteItem.id")
    patient: Mapped["Patient"] = relationship("Patient")

class QuoteItem(Base):
    __tablename__ = "quote_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    quote_id: Mapped[int] = mapped_column(ForeignKey("quotes.id"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    name: Mapped[str]
    quantity: Mapped[int]
    original_price: Mapped[Decimal]
    price: Mapped[Decimal] # unit price after discount
    discount_percentage: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    discount_id: Mapped[Optional[int]] = mapped_column(ForeignKey("discount_requests.id"))
    total: Mapped[Decimal]

    quote: Mapped["Quote"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship("Product")

class Order(Base):
    '''
    payment_status is only written as a side effect of billing (services/billing.py)
    '''
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String, unique=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"))
    laboratory_id: Mapped[Optional[int]] = mapped_column(ForeignKey("laboratories.id"))
    subtotal: Mapped[Decimal]
    tax: Mapped[Decimal]
    discount: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    total: Mapped[Decimal]
    status: Mapped[OrderStatus] = mapped_column(default=OrderStatus.PENDING)
    payment_status: Mapped[PaymentStatus] = mapped_column(default=PaymentStatus.PENDING)
    notes: Mapped[Optional[str]]
    created_by: Mapped[int] = mapped_column(ForeignKey("staff_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items: Mapped[List["OrderItem"]] = relationship(back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    patient: Mapped["Patient"] = relationship("Patient")

class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    name: Mapped[str]
    quantity: Mapped[int]
    price: Mapped[Decimal] # unit price after discount
    discount_percentage: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    discount_id: Mapped[Optional[int]] = mapped_column(ForeignKey("discount_requests.id"))
    total: Mapped[Decimal]
    notes: Mapped[Optional[str]]

    order: Mapped["Order"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship("Product")
