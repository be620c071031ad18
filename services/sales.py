import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Type
from pydantic import BaseModel
from sqlalchemy.orm import Session
from config import SALE_NUMBER_PREFIX
from models.appointment import Appointment
from models.clinic import Patient, PaymentMethod
from models.model_enums import PaymentStatus, SaleStatus
from models.orders import Order
from models.payments import PartialPayment, Sale, SalePayment
from repository.laboratory import get_laboratory
from repository.numbering import flush_numbered, next_document_number, retry_on_collision
from repository.payments import (
    SaleFilters,
    count_cancelled_sales,
    get_partial_payment,
    get_sale,
    get_sale_payment,
    list_partial_payments as _list_partial_payments,
    lock_sale,
    sales_query,
    sales_totals_by_payment_status,
    sum_payments,
)
from services import billing, laboratory
from services.laboratory import LabTrigger
from utils import local_datetime
from utils.auth import Actor
from utils.errors import ForbiddenError, NotFoundError, StateError, ValidationError
from utils.money import ZERO, D, money2
from utils.pagination import PaginationInput, paginate
from utils.transaction import unit_of_work

class PaymentFactRequest(BaseModel):
    amount: Decimal
    payment_method_id: int
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None

class CreateSaleRequest(LabTrigger):
    patient_id: int
    order_id: Optional[int] = None
    appointment_id: Optional[int] = None
    subtotal: Decimal
    tax: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal
    notes: Optional[str] = None
    payments: list[PaymentFactRequest] = []

class PaymentStatusTotals(BaseModel):
    count: int
    total: Decimal
    amount_paid: Decimal
    balance: Decimal

class SaleStats(BaseModel):
    total_sales: int
    total_amount: Decimal
    total_paid: Decimal
    total_balance: Decimal
    cancelled_sales: int
    by_payment_status: dict[PaymentStatus, PaymentStatusTotals]

# Ledger

CLOSED_STATUSES = (SaleStatus.CANCELLED, SaleStatus.REFUNDED)

def derive_ledger(total, amount_paid) -> tuple[Decimal, PaymentStatus]:
    '''
    balance = total - paid. Paid once nothing is owed, partial while something
    but not everything has been paid, pending otherwise.
    '''
    total = money2(total)
    amount_paid = money2(amount_paid)
    balance = total - amount_paid
    if balance <= 0:
        return balance, PaymentStatus.PAID
    if amount_paid > 0:
        return balance, PaymentStatus.PARTIAL
    return balance, PaymentStatus.PENDING

def recompute_ledger(db: Session, sale: Sale):
    '''
    Only writer of amount_paid, balance and payment_status. Both payment tracks count.
    '''
    db.flush()
    amount_paid = sum_payments(db, sale.id)
    balance, payment_status = derive_ledger(sale.total, amount_paid)
    sale.amount_paid = amount_paid
    sale.balance = balance
    sale.payment_status = payment_status
    if sale.status not in CLOSED_STATUSES:
        sale.status = SaleStatus.COMPLETED if payment_status == PaymentStatus.PAID else SaleStatus.PENDING
    db.flush()

def _locked(db: Session, sale_id: int) -> Sale:
    sale = lock_sale(db, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale

def _ensure_open(sale: Sale):
    if sale.status in CLOSED_STATUSES:
        raise StateError(f"Sale {sale.sale_number} is {sale.status.value}, its payments cannot change")

def _record_payment(db: Session, sale: Sale, model: Type[SalePayment] | Type[PartialPayment], req: PaymentFactRequest, actor: Actor):
    _ensure_open(sale)
    amount = money2(req.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if amount > money2(sale.balance):
        raise ValidationError(f"Payment amount {amount} exceeds the outstanding balance {money2(sale.balance)}")
    if not db.query(PaymentMethod).filter(PaymentMethod.id == req.payment_method_id, PaymentMethod.is_active == True).first():
        raise NotFoundError(f"Payment method {req.payment_method_id} not found")

    payment = model(
        sale_id=sale.id,
        payment_method_id=req.payment_method_id,
        amount=amount,
        reference_number=req.reference_number,
        payment_date=req.payment_date or local_datetime.today(),
        notes=req.notes,
        created_by=actor.id,
    )
    db.add(payment)
    recompute_ledger(db, sale)
    return payment

def _settle(db: Session, sale: Sale):
    recompute_ledger(db, sale)
    billing.propagate(db, sale)

# Sale operations

def get_sale_or_404(db: Session, sale_id: int) -> Sale:
    sale = get_sale(db, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale

def list_sales(db: Session, filters: SaleFilters, pagination: PaginationInput, transform=None):
    return paginate(sales_query(db, filters), db, pagination, transform)

@retry_on_collision
def create_sale(db: Session, actor: Actor, req: CreateSaleRequest) -> Sale:
    '''
    Header, then the initial payments one by one, then billing propagation,
    then the laboratory order when lenses are involved. One unit of work.
    '''
    with unit_of_work(db, "sale.create", actor, patient_id=req.patient_id, order_id=req.order_id, appointment_id=req.appointment_id):
        if not db.query(Patient).filter(Patient.id == req.patient_id).first():
            raise NotFoundError(f"Patient {req.patient_id} not found")
        if req.order_id and not db.query(Order).filter(Order.id == req.order_id).first():
            raise NotFoundError(f"Order {req.order_id} not found")
        if req.appointment_id and not db.query(Appointment).filter(Appointment.id == req.appointment_id).first():
            raise NotFoundError(f"Appointment {req.appointment_id} not found")
        if req.laboratory_id and not get_laboratory(db, req.laboratory_id):
            raise NotFoundError(f"Laboratory {req.laboratory_id} not found")
        if D(req.total) < 0:
            raise ValidationError("Sale total cannot be negative")

        total = money2(req.total)
        sale = Sale(
            sale_number=next_document_number(db, Sale, Sale.sale_number, SALE_NUMBER_PREFIX),
            patient_id=req.patient_id,
            order_id=req.order_id,
            appointment_id=req.appointment_id,
            subtotal=money2(req.subtotal),
            tax=money2(req.tax),
            discount=money2(req.discount),
            total=total,
            amount_paid=ZERO,
            balance=total,
            status=SaleStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            notes=req.notes,
            created_by=actor.id,
            created_at=local_datetime.now(),
        )
        db.add(sale)
        flush_numbered(db, Sale.sale_number)

        for payment in req.payments:
            _record_payment(db, sale, SalePayment, payment, actor)
        _settle(db, sale)

        if laboratory.needs_lab_order(db, sale, req):
            laboratory.open_for_sale(db, sale, req.laboratory_id, req.laboratory_notes)
    logging.info(f"Sale {sale.sale_number} created by {actor.id}: total {sale.total}, paid {sale.amount_paid}, {sale.payment_status.value}")
    return sale

def add_payment(db: Session, sale_id: int, actor: Actor, req: PaymentFactRequest) -> SalePayment:
    with unit_of_work(db, "sale.add_payment", actor, sale_id=sale_id, amount=str(req.amount)):
        sale = _locked(db, sale_id)
        payment = _record_payment(db, sale, SalePayment, req, actor)
        _settle(db, sale)
    logging.info(f"Sale {sale_id}: payment {payment.id} of {payment.amount} added by {actor.id}, balance {sale.balance}")
    return payment

def remove_payment(db: Session, sale_id: int, payment_id: int, actor: Actor) -> Sale:
    '''
    A correction, not a refund: the payment row is deleted
    '''
    with unit_of_work(db, "sale.remove_payment", actor, sale_id=sale_id, payment_id=payment_id):
        sale = _locked(db, sale_id)
        _ensure_open(sale)
        payment = get_sale_payment(db, sale_id, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found for sale {sale_id}")
        sale.payments.remove(payment)
        _settle(db, sale)
    logging.info(f"Sale {sale_id}: payment {payment_id} removed by {actor.id}, balance {sale.balance}")
    return sale

def add_partial_payment(db: Session, sale_id: int, actor: Actor, req: PaymentFactRequest) -> PartialPayment:
    with unit_of_work(db, "sale.add_partial_payment", actor, sale_id=sale_id, amount=str(req.amount)):
        sale = _locked(db, sale_id)
        payment = _record_payment(db, sale, PartialPayment, req, actor)
        _settle(db, sale)
    logging.info(f"Sale {sale_id}: partial payment {payment.id} of {payment.amount} added by {actor.id}, balance {sale.balance}")
    return payment

def remove_partial_payment(db: Session, sale_id: int, payment_id: int, actor: Actor) -> Sale:
    with unit_of_work(db, "sale.remove_partial_payment", actor, sale_id=sale_id, payment_id=payment_id):
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can remove partial payments")
        sale = _locked(db, sale_id)
        _ensure_open(sale)
        payment = get_partial_payment(db, payment_id)
        if not payment or payment.sale_id != sale.id:
            raise NotFoundError(f"Partial payment {payment_id} does not belong to sale {sale_id}")
        sale.partial_payments.remove(payment)
        _settle(db, sale)
    logging.info(f"Sale {sale_id}: partial payment {payment_id} removed by {actor.id}, balance {sale.balance}")
    return sale

def list_partial_payments(db: Session, sale_id: int) -> list[PartialPayment]:
    get_sale_or_404(db, sale_id)
    return _list_partial_payments(db, sale_id)

def cancel_sale(db: Session, sale_id: int, actor: Actor) -> Sale:
    with unit_of_work(db, "sale.cancel", actor, sale_id=sale_id):
        sale = _locked(db, sale_id)
        if sale.status == SaleStatus.CANCELLED:
            raise StateError(f"Sale {sale.sale_number} is already cancelled")
        if sale.status == SaleStatus.REFUNDED:
            raise StateError(f"Sale {sale.sale_number} was refunded and cannot be cancelled")
        sale.status = SaleStatus.CANCELLED
        sale.cancelled_at = local_datetime.now()
        billing.on_sale_cancelled(db, sale)
    logging.info(f"Sale {sale_id} cancelled by {actor.id}")
    return sale

def delete_sale(db: Session, sale_id: int, actor: Actor):
    '''
    Removes the sale with its payments. Laboratory orders stay, detached from the sale.
    '''
    with unit_of_work(db, "sale.delete", actor, sale_id=sale_id):
        sale = _locked(db, sale_id)
        billing.on_sale_deleted(db, sale)
        db.delete(sale)
    logging.info(f"Sale {sale_id} deleted by {actor.id}")

def resync_sale(db: Session, sale_id: int, actor: Actor) -> Sale:
    '''
    Recomputes the ledger from the payment rows and pushes it to the order and appointment
    '''
    with unit_of_work(db, "sale.resync", actor, sale_id=sale_id):
        sale = _locked(db, sale_id)
        _settle(db, sale)
    logging.info(f"Sale {sale_id} resynced by {actor.id}: paid {sale.amount_paid}, balance {sale.balance}, {sale.payment_status.value}")
    return sale

# Reporting

def sale_stats(db: Session, date_from: Optional[date] = None, date_to: Optional[date] = None) -> SaleStats:
    totals = sales_totals_by_payment_status(db, date_from, date_to)
    by_status = {
        status: PaymentStatusTotals(count=count, total=total, amount_paid=paid, balance=balance)
        for status, (count, total, paid, balance) in totals.items()
    }
    return SaleStats(
        total_sales=sum(row.count for row in by_status.values()),
        total_amount=sum((row.total for row in by_status.values()), ZERO),
        total_paid=sum((row.amount_paid for row in by_status.values()), ZERO),
        total_balance=sum((row.balance for row in by_status.values()), ZERO),
        cancelled_sales=count_cancelled_sales(db, date_from, date_to),
        by_payment_status=by_status,
    )

def today_stats(db: Session) -> SaleStats:
    today = local_datetime.today()
    return sale_stats(db, today, today)
