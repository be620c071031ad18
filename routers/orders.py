from datetime import date
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import get_db
from models.model_enums import OrderStatus, PaymentStatus, QuoteStatus, Role
from models.orders import Order, Quote
from services import orders as order_service
from services.orders import CreateOrderRequest, CreateQuoteRequest
from utils.auth import Actor
from utils.fastapi import default_resp
from .utils import get_actor, require_roles

router = APIRouter(dependencies=[Depends(get_actor)], responses=default_resp)

class LineDetails(BaseModel):
    product_id: int
    name: str
    quantity: int
    price: Decimal
    discount_percentage: Decimal
    discount_id: Optional[int]
    total: Decimal

class OrderDetails(BaseModel):
    id: int
    order_number: str
    patient_id: int
    appointment_id: Optional[int]
    laboratory_id: Optional[int]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    notes: Optional[str]
    items: list[LineDetails]

class QuoteDetails(BaseModel):
    id: int
    quote_number: str
    patient_id: int
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: QuoteStatus
    expiration_date: Optional[date]
    order_id: Optional[int]
    notes: Optional[str]
    items: list[LineDetails]

def _lines(items) -> list[LineDetails]:
    return [
        LineDetails(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            price=item.price,
            discount_percentage=item.discount_percentage,
            discount_id=item.discount_id,
            total=item.total,
        )
        for item in items
    ]

def order_details(order: Order) -> OrderDetails:
    return OrderDetails(**{k: v for k, v in order.as_dict().items() if k in OrderDetails.model_fields}, items=_lines(order.items))

def quote_details(quote: Quote) -> QuoteDetails:
    return QuoteDetails(**{k: v for k, v in quote.as_dict().items() if k in QuoteDetails.model_fields}, items=_lines(quote.items))

@router.post("/orders", response_model=OrderDetails)
def create_order(req: CreateOrderRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return order_details(order_service.create_order(db, actor, req))

@router.get("/orders/{order_id}", response_model=OrderDetails)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return order_details(order_service.get_order(db, order_id))

@router.post("/quotes", response_model=QuoteDetails)
def create_quote(req: CreateQuoteRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return quote_details(order_service.create_quote(db, actor, req))

@router.get("/quotes/{quote_id}", response_model=QuoteDetails)
def get_quote(quote_id: int, db: Session = Depends(get_db)):
    return quote_details(order_service.get_quote(db, quote_id))

@router.post("/quotes/{quote_id}/convert", response_model=OrderDetails)
def convert_quote(quote_id: int, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return order_details(order_service.convert_quote(db, quote_id, actor))
