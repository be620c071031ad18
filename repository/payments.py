from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from models.payments import PartialPayment, Sale, SalePayment
from models.model_enums import PaymentStatus, SaleStatus
from utils import local_datetime
from utils.money import ZERO, money2

class SaleFilters(BaseModel):
    patient_id: Optional[int] = None
    status: Optional[SaleStatus] = None
    payment_status: Optional[PaymentStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

def get_sale(db: Session, sale_id: int) -> Sale | None:
    return db.query(Sale).filter(Sale.id == sale_id).first()

def lock_sale(db: Session, sale_id: int) -> Sale | None:
    '''
    Every ledger mutation starts here so concurrent payments on one sale serialise
    '''
    return db.query(Sale).filter(Sale.id == sale_id).with_for_update().first()

def sum_payments(db: Session, sale_id: int) -> Decimal:
    '''
    Sum over both payment tracks
    '''
    full = db.query(func.coalesce(func.sum(SalePayment.amount), 0)).filter(SalePayment.sale_id == sale_id).scalar()
    partial = db.query(func.coalesce(func.sum(PartialPayment.amount), 0)).filter(PartialPayment.sale_id == sale_id).scalar()
    return money2(full) + money2(partial)

def get_sale_payment(db: Session, sale_id: int, payment_id: int) -> SalePayment | None:
    return db.query(SalePayment).filter(SalePayment.id == payment_id, SalePayment.sale_id == sale_id).first()

def get_partial_payment(db: Session, payment_id: int) -> PartialPayment | None:
    return db.query(PartialPayment).filter(PartialPayment.id == payment_id).first()

def list_partial_payments(db: Session, sale_id: int) -> list[PartialPayment]:
    return db.query(PartialPayment).options(joinedload(PartialPayment.payment_method)) \
        .filter(PartialPayment.sale_id == sale_id) \
        .order_by(PartialPayment.payment_date.desc(), PartialPayment.id.desc()) \
        .all()

def _created_between(query, date_from: Optional[date], date_to: Optional[date]):
    if date_from:
        query = query.filter(Sale.created_at >= local_datetime.midnight(date_from))
    if date_to:
        query = query.filter(Sale.created_at < local_datetime.midnight(date_to + timedelta(days=1)))
    return query

def sales_query(db: Session, filters: SaleFilters):
    query = db.query(Sale).options(joinedload(Sale.patient))
    if filters.patient_id:
        query = query.filter(Sale.patient_id == filters.patient_id)
    if filters.status:
        query = query.filter(Sale.status == filters.status)
    if filters.payment_status:
        query = query.filter(Sale.payment_status == filters.payment_status)
    query = _created_between(query, filters.date_from, filters.date_to)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc())

def sales_totals_by_payment_status(db: Session, date_from: Optional[date] = None, date_to: Optional[date] = None):
    '''
    Cancelled sales are left out of the totals.
    Returns {payment_status: (count, sum(total), sum(amount_paid), sum(balance))}
    '''
    query = db.query(
        Sale.payment_status,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total), 0),
        func.coalesce(func.sum(Sale.amount_paid), 0),
        func.coalesce(func.sum(Sale.balance), 0),
    ).filter(Sale.status != SaleStatus.CANCELLED)
    query = _created_between(query, date_from, date_to)
    rows = query.group_by(Sale.payment_status).all()

    totals = {status: (0, ZERO, ZERO, ZERO) for status in PaymentStatus}
    for status, count, total, paid, balance in rows:
        totals[status] = (count, money2(total), money2(paid), money2(balance))
    return totals

def count_cancelled_sales(db: Session, date_from: Optional[date] = None, date_to: Optional[date] = None) -> int:
    query = db.query(Sale).filter(Sale.status == SaleStatus.CANCELLED)
    return _created_between(query, date_from, date_to).count()

def open_sales(db: Session) -> list[Sale]:
    return db.query(Sale).filter(Sale.status.not_in([SaleStatus.CANCELLED, SaleStatus.REFUNDED])) \
        .order_by(Sale.id.asc()).all()
