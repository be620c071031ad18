from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import get_db
from models.model_enums import PaymentStatus, Role, SaleStatus
from models.payments import PartialPayment, Sale, SalePayment
from repository.payments import SaleFilters
from services import sales as sales_service
from services.sales import CreateSaleRequest, PaymentFactRequest, SaleStats
from utils.auth import Actor
from utils.fastapi import SuccessResp, default_resp
from utils.pagination import Page, PaginationInput
from .utils import get_actor, require_roles

router = APIRouter(dependencies=[Depends(get_actor)], responses=default_resp)

class PaymentDetails(BaseModel):
    id: int
    sale_id: int
    payment_method_id: int
    payment_method: str
    amount: Decimal
    reference_number: Optional[str]
    payment_date: date
    notes: Optional[str]
    created_by: int

class SaleDetails(BaseModel):
    id: int
    sale_number: str
    patient_id: int
    order_id: Optional[int]
    appointment_id: Optional[int]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: SaleStatus
    payment_status: PaymentStatus
    notes: Optional[str]
    cancelled_at: Optional[datetime]
    created_by: int
    created_at: Optional[datetime]
    payments: list[PaymentDetails] = []
    partial_payments: list[PaymentDetails] = []
    laboratory_order_id: Optional[int] = None

class SaleSummary(BaseModel):
    id: int
    sale_number: str
    patient_id: int
    patient_name: str
    total: Decimal
    balance: Decimal
    status: SaleStatus
    payment_status: PaymentStatus
    created_at: Optional[datetime]

def to_payment(payment: SalePayment | PartialPayment) -> PaymentDetails:
    return PaymentDetails(
        id=payment.id,
        sale_id=payment.sale_id,
        payment_method_id=payment.payment_method_id,
        payment_method=payment.payment_method.name,
        amount=payment.amount,
        reference_number=payment.reference_number,
        payment_date=payment.payment_date,
        notes=payment.notes,
        created_by=payment.created_by,
    )

def to_details(sale: Sale) -> SaleDetails:
    return SaleDetails(
        id=sale.id,
        sale_number=sale.sale_number,
        patient_id=sale.patient_id,
        order_id=sale.order_id,
        appointment_id=sale.appointment_id,
        subtotal=sale.subtotal,
        tax=sale.tax,
        discount=sale.discount,
        total=sale.total,
        amount_paid=sale.amount_paid,
        balance=sale.balance,
        status=sale.status,
        payment_status=sale.payment_status,
        notes=sale.notes,
        cancelled_at=sale.cancelled_at,
        created_by=sale.created_by,
        created_at=sale.created_at,
        payments=[to_payment(payment) for payment in sale.payments],
        partial_payments=[to_payment(payment) for payment in sale.partial_payments],
        laboratory_order_id=sale.laboratory_orders[0].id if sale.laboratory_orders else None,
    )

def to_summary(sale: Sale) -> SaleSummary:
    return SaleSummary(
        id=sale.id,
        sale_number=sale.sale_number,
        patient_id=sale.patient_id,
        patient_name=sale.patient.full_name,
        total=sale.total,
        balance=sale.balance,
        status=sale.status,
        payment_status=sale.payment_status,
        created_at=sale.created_at,
    )

@router.get("", response_model=Page[SaleSummary])
def list_sales(
    patient_id: Optional[int] = None,
    status: Optional[SaleStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    pagination: PaginationInput = Depends(),
    db: Session = Depends(get_db),
):
    filters = SaleFilters(patient_id=patient_id, status=status, payment_status=payment_status, date_from=date_from, date_to=date_to)
    return sales_service.list_sales(db, filters, pagination, to_summary)

@router.get("/stats", response_model=SaleStats)
def get_sale_stats(date_from: Optional[date] = None, date_to: Optional[date] = None, db: Session = Depends(get_db)):
    return sales_service.sale_stats(db, date_from, date_to)

@router.get("/stats/today", response_model=SaleStats)
def get_today_stats(db: Session = Depends(get_db)):
    return sales_service.today_stats(db)

@router.post("", response_model=SaleDetails)
def create_sale(req: CreateSaleRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return to_details(sales_service.create_sale(db, actor, req))

@router.get("/{sale_id}", response_model=SaleDetails)
def get_sale(sale_id: int, db: Session = Depends(get_db)):
    return to_details(sales_service.get_sale_or_404(db, sale_id))

@router.post("/{sale_id}/payments", response_model=SaleDetails)
def add_payment(sale_id: int, req: PaymentFactRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    sales_service.add_payment(db, sale_id, actor, req)
    return to_details(sales_service.get_sale_or_404(db, sale_id))

@router.delete("/{sale_id}/payments/{payment_id}", response_model=SaleDetails)
def remove_payment(sale_id: int, payment_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(sales_service.remove_payment(db, sale_id, payment_id, actor))

@router.post("/{sale_id}/cancel", response_model=SaleDetails)
def cancel_sale(sale_id: int, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return to_details(sales_service.cancel_sale(db, sale_id, actor))

@router.delete("/{sale_id}", response_model=SuccessResp)
def delete_sale(sale_id: int, actor: Actor = Depends(require_roles(Role.ADMIN)), db: Session = Depends(get_db)):
    sales_service.delete_sale(db, sale_id, actor)
    return SuccessResp(success=True)

# Partial payments, removal is restricted to administrators by the service

@router.get("/{sale_id}/partial-payments", response_model=list[PaymentDetails])
def list_partial_payments(sale_id: int, db: Session = Depends(get_db)):
    return [to_payment(payment) for payment in sales_service.list_partial_payments(db, sale_id)]

@router.post("/{sale_id}/partial-payments", response_model=SaleDetails)
def add_partial_payment(sale_id: int, req: PaymentFactRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    sales_service.add_partial_payment(db, sale_id, actor, req)
    return to_details(sales_service.get_sale_or_404(db, sale_id))

@router.delete("/{sale_id}/partial-payments/{payment_id}", response_model=SaleDetails)
def remove_partial_payment(sale_id: int, payment_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(sales_service.remove_partial_payment(db, sale_id, payment_id, actor))
