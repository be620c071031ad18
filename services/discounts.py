import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session
from models.clinic import Patient
from models.discount import DiscountRequest
from models.model_enums import DiscountRequestStatus
from repository.catalog import get_product
from utils import local_datetime
from utils.auth import Actor
from utils.errors import ForbiddenError, NotFoundError, StateError, ValidationError
from utils.money import HUNDRED, ZERO, D, apply_percentage, money2
from utils.pagination import PaginationInput, paginate
from utils.transaction import unit_of_work

class DiscountOffer(BaseModel):
    discount_id: int
    percentage: Decimal
    patient_id: Optional[int] = None
    is_global: bool
    expiry_date: Optional[date] = None

class PriceQuote(BaseModel):
    original: Decimal
    discounted: Decimal
    percentage: Decimal
    discount_id: Optional[int] = None
    savings: Decimal

class ProductDiscountInfo(BaseModel):
    product_id: int
    original_price: Decimal
    has_discount: bool
    discount: Optional[DiscountOffer] = None
    discounted_price: Decimal
    savings: Decimal

class CreateDiscountRequest(BaseModel):
    product_id: int
    patient_id: Optional[int] = None
    discount_percentage: Decimal = Field(gt=0, le=100)
    reason: Optional[str] = None
    expiry_date: Optional[date] = None
    is_global: bool = False

class UpdateDiscountRequest(BaseModel):
    product_id: Optional[int] = None
    patient_id: Optional[int] = None
    discount_percentage: Optional[Decimal] = Field(default=None, gt=0, le=100)
    reason: Optional[str] = None
    expiry_date: Optional[date] = None
    is_global: Optional[bool] = None

def _to_offer(discount: DiscountRequest) -> DiscountOffer:
    return DiscountOffer(
        discount_id=discount.id,
        percentage=D(discount.discount_percentage),
        patient_id=discount.patient_id,
        is_global=discount.applies_to_everyone,
        expiry_date=discount.expiry_date,
    )

def _valid_discounts_query(db: Session, product_id: int):
    return db.query(DiscountRequest).filter(
        DiscountRequest.product_id == product_id,
        DiscountRequest.status == DiscountRequestStatus.APPROVED,
        or_(DiscountRequest.expiry_date == None, DiscountRequest.expiry_date >= local_datetime.today()),  # noqa: E711
    )

def _is_global_clause():
    return or_(DiscountRequest.patient_id == None, DiscountRequest.is_global == True)  # noqa: E711, E712

def resolve(db: Session, product_id: int, patient_id: Optional[int] = None) -> DiscountOffer | None:
    '''
    Best approved, unexpired discount for the product.
    With a patient, an offer made for that patient beats any global offer, then the highest
    percentage wins. Equal percentages fall back to the oldest request (lowest id).
    Without a patient only global offers are considered.
    '''
    query = _valid_discounts_query(db, product_id)
    if patient_id:
        query = query.filter(or_(_is_global_clause(), DiscountRequest.patient_id == patient_id))
    else:
        query = query.filter(_is_global_clause())

    candidates = query.all()
    if not candidates:
        return None

    def rank(discount: DiscountRequest):
        patient_specific = patient_id is not None and not discount.applies_to_everyone
        return (0 if patient_specific else 1, -D(discount.discount_percentage), discount.id)

    return _to_offer(min(candidates, key=rank))

def calculate_discounted_price(base_price, percentage) -> Decimal:
    percentage = D(percentage)
    if percentage <= 0 or percentage > HUNDRED:
        return money2(base_price)
    return apply_percentage(base_price, percentage)

def price(db: Session, base_unit_price, product_id: int, patient_id: Optional[int] = None) -> PriceQuote:
    original = money2(base_unit_price)
    offer = resolve(db, product_id, patient_id)
    if not offer or offer.percentage <= 0 or offer.percentage > HUNDRED:
        return PriceQuote(original=original, discounted=original, percentage=ZERO, savings=ZERO)

    discounted = calculate_discounted_price(original, offer.percentage)
    return PriceQuote(
        original=original,
        discounted=discounted,
        percentage=offer.percentage,
        discount_id=offer.discount_id,
        savings=original - discounted,
    )

def validate_application(db: Session, product_id: int, discount_id: int, patient_id: Optional[int] = None) -> bool:
    discount = _valid_discounts_query(db, product_id).filter(DiscountRequest.id == discount_id).first()
    if not discount:
        return False
    return discount.applies_to_everyone or discount.patient_id == patient_id

def active_discounts_for_product(db: Session, product_id: int) -> list[DiscountOffer]:
    discounts = _valid_discounts_query(db, product_id) \
        .order_by(DiscountRequest.discount_percentage.desc(), DiscountRequest.id.asc()).all()
    return [_to_offer(discount) for discount in discounts]

def product_discount_info(db: Session, product_id: int, patient_id: Optional[int] = None) -> ProductDiscountInfo:
    product = get_product(db, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    quote = price(db, product.price, product_id, patient_id)
    offer = resolve(db, product_id, patient_id) if quote.discount_id else None
    return ProductDiscountInfo(
        product_id=product_id,
        original_price=quote.original,
        has_discount=offer is not None,
        discount=offer,
        discounted_price=quote.discounted,
        savings=quote.savings,
    )

# Discount requests

def get_discount_request(db: Session, request_id: int) -> DiscountRequest:
    discount = db.query(DiscountRequest).filter(DiscountRequest.id == request_id).first()
    if not discount:
        raise NotFoundError(f"Discount request {request_id} not found")
    return discount

def list_discount_requests(db: Session, actor: Actor, pagination: PaginationInput, status: Optional[DiscountRequestStatus] = None, transform=None):
    query = db.query(DiscountRequest)
    if not actor.is_admin:
        query = query.filter(DiscountRequest.user_id == actor.id)
    if status:
        query = query.filter(DiscountRequest.status == status)
    return paginate(query.order_by(DiscountRequest.id.desc()), db, pagination, transform)

def create_discount_request(db: Session, actor: Actor, req: CreateDiscountRequest) -> DiscountRequest:
    with unit_of_work(db, "discount.create", actor, product_id=req.product_id, patient_id=req.patient_id):
        product = get_product(db, req.product_id)
        if not product:
            raise NotFoundError(f"Product {req.product_id} not found")
        if req.patient_id and not db.query(Patient).filter(Patient.id == req.patient_id).first():
            raise NotFoundError(f"Patient {req.patient_id} not found")
        if req.expiry_date and req.expiry_date < local_datetime.today():
            raise ValidationError("Expiry date cannot be in the past")

        # Prices are a snapshot, later catalog changes do not touch them
        original_price = money2(product.price)
        discount = DiscountRequest(
            user_id=actor.id,
            product_id=req.product_id,
            patient_id=req.patient_id,
            discount_percentage=D(req.discount_percentage),
            original_price=original_price,
            discounted_price=calculate_discounted_price(original_price, req.discount_percentage),
            reason=req.reason,
            expiry_date=req.expiry_date,
            is_global=req.is_global,
            status=DiscountRequestStatus.PENDING,
        )
        if actor.is_admin:
            discount.status = DiscountRequestStatus.APPROVED
            discount.approved_by = actor.id
            discount.approved_at = local_datetime.now()
            discount.approval_notes = "Auto-approved: created by an administrator"
        db.add(discount)
    logging.info(f"Discount request {discount.id} created by {actor.id} ({discount.status.value})")
    return discount

def update_discount_request(db: Session, request_id: int, actor: Actor, req: UpdateDiscountRequest) -> DiscountRequest:
    '''
    Owners edit their own pending requests, admins edit any request.
    A new percentage or product takes a fresh price snapshot from the catalog.
    '''
    changes = req.model_dump(exclude_unset=True)
    for required in ("product_id", "discount_percentage", "is_global"):
        if changes.get(required) is None:
            changes.pop(required, None)
    with unit_of_work(db, "discount.update", actor, discount_request_id=request_id, fields=sorted(changes)):
        discount = get_discount_request(db, request_id)
        if not actor.is_admin:
            if discount.user_id != actor.id:
                raise ForbiddenError("You can only edit your own discount requests")
            if not discount.is_pending():
                raise StateError("Only pending discount requests can be edited")
        if req.product_id and not get_product(db, req.product_id):
            raise NotFoundError(f"Product {req.product_id} not found")
        if req.patient_id and not db.query(Patient).filter(Patient.id == req.patient_id).first():
            raise NotFoundError(f"Patient {req.patient_id} not found")
        if req.expiry_date and req.expiry_date < local_datetime.today():
            raise ValidationError("Expiry date cannot be in the past")

        discount.update_vars(changes)
        if req.discount_percentage is not None or req.product_id:
            discount.original_price = money2(get_product(db, discount.product_id).price)
            discount.discounted_price = calculate_discounted_price(discount.original_price, discount.discount_percentage)
    logging.info(f"Discount request {request_id} updated by {actor.id}: {sorted(changes)}")
    return discount

def approve_discount_request(db: Session, request_id: int, actor: Actor, notes: Optional[str] = None) -> DiscountRequest:
    '''
    Callers check is_pending() first, approving twice simply overwrites the approver
    '''
    with unit_of_work(db, "discount.approve", actor, discount_request_id=request_id):
        discount = get_discount_request(db, request_id)
        discount.status = DiscountRequestStatus.APPROVED
        discount.approved_by = actor.id
        discount.approved_at = local_datetime.now()
        discount.approval_notes = notes
    logging.info(f"Discount request {request_id} approved by {actor.id}")
    return discount

def reject_discount_request(db: Session, request_id: int, actor: Actor, notes: Optional[str] = None) -> DiscountRequest:
    with unit_of_work(db, "discount.reject", actor, discount_request_id=request_id):
        discount = get_discount_request(db, request_id)
        discount.status = DiscountRequestStatus.REJECTED
        discount.approved_by = actor.id
        discount.approved_at = local_datetime.now()
        discount.rejection_reason = notes
    logging.info(f"Discount request {request_id} rejected by {actor.id}")
    return discount

def delete_discount_request(db: Session, request_id: int, actor: Actor):
    with unit_of_work(db, "discount.delete", actor, discount_request_id=request_id):
        discount = get_discount_request(db, request_id)
        if not actor.is_admin:
            if discount.user_id != actor.id:
                raise ForbiddenError("You can only delete your own discount requests")
            if not discount.is_pending():
                raise StateError("Only pending discount requests can be deleted")
        db.delete(discount)
    logging.info(f"Discount request {request_id} deleted by {actor.id}")
