import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from config import ORDER_NUMBER_PREFIX, QUOTE_NUMBER_PREFIX, TAX_RATE
from models.appointment import Appointment
from models.clinic import Patient
from models.model_enums import OrderStatus, PaymentStatus, QuoteStatus
from models.orders import Order, OrderItem, Quote, QuoteItem
from repository.catalog import get_products
from repository.laboratory import get_laboratory
from repository.numbering import flush_numbered, next_document_number, retry_on_collision
from services import discounts
from utils import local_datetime
from utils.auth import Actor
from utils.errors import NotFoundError, StateError, ValidationError
from utils.money import ZERO, D, money2
from utils.transaction import unit_of_work

class ItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)
    notes: Optional[str] = None

class CreateOrderRequest(BaseModel):
    patient_id: int
    appointment_id: Optional[int] = None
    laboratory_id: Optional[int] = None
    items: list[ItemRequest] = Field(min_length=1)
    notes: Optional[str] = None

class CreateQuoteRequest(BaseModel):
    patient_id: int
    items: list[ItemRequest] = Field(min_length=1)
    expiration_date: Optional[date] = None
    notes: Optional[str] = None

class OrderItemInfo(BaseModel):
    product_id: int
    is_lens: bool

class PricedItem(BaseModel):
    product_id: int
    name: str
    quantity: int
    original_price: Decimal
    price: Decimal
    discount_percentage: Decimal
    discount_id: Optional[int] = None
    total: Decimal
    notes: Optional[str] = None

class Totals(BaseModel):
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

def price_items(db: Session, patient_id: int, items: list[ItemRequest]) -> tuple[list[PricedItem], Totals]:
    '''
    Unit prices come out of the discount engine, later stages (sales) take them as given
    '''
    products = get_products(db, [item.product_id for item in items])
    priced: list[PricedItem] = []
    subtotal = ZERO
    discount = ZERO
    for item in items:
        product = products.get(item.product_id)
        if not product:
            raise NotFoundError(f"Product {item.product_id} not found")
        quote = discounts.price(db, product.price, product.id, patient_id)
        line_total = money2(quote.discounted * item.quantity)
        priced.append(PricedItem(
            product_id=product.id,
            name=product.description or product.internal_code,
            quantity=item.quantity,
            original_price=quote.original,
            price=quote.discounted,
            discount_percentage=quote.percentage,
            discount_id=quote.discount_id,
            total=line_total,
            notes=item.notes,
        ))
        subtotal += line_total
        discount += money2(quote.savings * item.quantity)

    tax = money2(subtotal * D(TAX_RATE))
    return priced, Totals(subtotal=subtotal, tax=tax, discount=discount, total=subtotal + tax)

def _require_patient(db: Session, patient_id: int):
    if not db.query(Patient).filter(Patient.id == patient_id).first():
        raise NotFoundError(f"Patient {patient_id} not found")

def get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order

def get_quote(db: Session, quote_id: int) -> Quote:
    quote = db.query(Quote).filter(Quote.id == quote_id).first()
    if not quote:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote

@retry_on_collision
def create_order(db: Session, actor: Actor, req: CreateOrderRequest) -> Order:
    with unit_of_work(db, "order.create", actor, patient_id=req.patient_id):
        _require_patient(db, req.patient_id)
        if req.appointment_id and not db.query(Appointment).filter(Appointment.id == req.appointment_id).first():
            raise NotFoundError(f"Appointment {req.appointment_id} not found")
        if req.laboratory_id and not get_laboratory(db, req.laboratory_id):
            raise NotFoundError(f"Laboratory {req.laboratory_id} not found")

        priced, totals = price_items(db, req.patient_id, req.items)
        order = Order(
            order_number=next_document_number(db, Order, Order.order_number, ORDER_NUMBER_PREFIX),
            patient_id=req.patient_id,
            appointment_id=req.appointment_id,
            laboratory_id=req.laboratory_id,
            subtotal=totals.subtotal,
            tax=totals.tax,
            discount=totals.discount,
            total=totals.total,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            notes=req.notes,
            created_by=actor.id,
            items=[OrderItem(**item.model_dump(exclude={'original_price'})) for item in priced],
        )
        db.add(order)
        flush_numbered(db, Order.order_number)
    logging.info(f"Order {order.order_number} created by {actor.id} for patient {req.patient_id}, total {totals.total}")
    return order

@retry_on_collision
def create_quote(db: Session, actor: Actor, req: CreateQuoteRequest) -> Quote:
    with unit_of_work(db, "quote.create", actor, patient_id=req.patient_id):
        _require_patient(db, req.patient_id)
        if req.expiration_date and req.expiration_date < local_datetime.today():
            raise ValidationError("Expiration date cannot be in the past")

        priced, totals = price_items(db, req.patient_id, req.items)
        quote = Quote(
            quote_number=next_document_number(db, Quote, Quote.quote_number, QUOTE_NUMBER_PREFIX),
            patient_id=req.patient_id,
            subtotal=totals.subtotal,
            tax=totals.tax,
            discount=totals.discount,
            total=totals.total,
            status=QuoteStatus.PENDING,
            expiration_date=req.expiration_date,
            notes=req.notes,
            created_by=actor.id,
            items=[QuoteItem(**item.model_dump(exclude={'notes'})) for item in priced],
        )
        db.add(quote)
        flush_numbered(db, Quote.quote_number)
    logging.info(f"Quote {quote.quote_number} created by {actor.id} for patient {req.patient_id}, total {totals.total}")
    return quote

@retry_on_collision
def convert_quote(db: Session, quote_id: int, actor: Actor) -> Order:
    '''
    Items are copied with the prices frozen on the quote, no discount lookup happens here
    '''
    with unit_of_work(db, "quote.convert", actor, quote_id=quote_id):
        quote = get_quote(db, quote_id)
        if quote.status not in (QuoteStatus.PENDING, QuoteStatus.APPROVED):
            raise StateError(f"Quote {quote.quote_number} is {quote.status.value} and cannot be converted")
        if quote.expiration_date and quote.expiration_date < local_datetime.today():
            raise StateError(f"Quote {quote.quote_number} expired on {quote.expiration_date}")

        order = Order(
            order_number=next_document_number(db, Order, Order.order_number, ORDER_NUMBER_PREFIX),
            patient_id=quote.patient_id,
            subtotal=quote.subtotal,
            tax=quote.tax,
            discount=quote.discount,
            total=quote.total,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            notes=quote.notes,
            created_by=actor.id,
            items=[
                OrderItem(
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price,
                    discount_percentage=item.discount_percentage,
                    discount_id=item.discount_id,
                    total=item.total,
                )
                for item in quote.items
            ],
        )
        db.add(order)
        flush_numbered(db, Order.order_number)
        quote.status = QuoteStatus.CONVERTED
        quote.order_id = order.id
    logging.info(f"Quote {quote_id} converted to order {order.order_number} by {actor.id}")
    return order

# Billing side effects, only called from services/billing.py

def apply_payment_status(db: Session, order_id: int, status: PaymentStatus):
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        logging.warning(f"Order {order_id} not found while applying payment status {status.value}")
        return
    order.payment_status = status

def apply_cancelled(db: Session, order_id: int):
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        logging.warning(f"Order {order_id} not found while cancelling")
        return
    order.status = OrderStatus.CANCELLED

def get_items(db: Session, order_id: int) -> list[OrderItemInfo]:
    items = db.query(OrderItem).filter(OrderItem.order_id == order_id).all()
    return [OrderItemInfo(product_id=item.product_id, is_lens=bool(item.product and item.product.is_lens)) for item in items]
