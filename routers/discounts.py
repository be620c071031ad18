from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import get_db
from models.discount import DiscountRequest
from models.model_enums import DiscountRequestStatus, Role
from services import discounts as discount_service
from services.discounts import CreateDiscountRequest, DiscountOffer, PriceQuote, ProductDiscountInfo, UpdateDiscountRequest
from utils.auth import Actor
from utils.errors import StateError
from utils.fastapi import SuccessResp, default_resp
from utils.pagination import Page, PaginationInput
from .utils import get_actor, require_roles

router = APIRouter(dependencies=[Depends(get_actor)], responses=default_resp)

class DiscountRequestDetails(BaseModel):
    id: int
    user_id: int
    product_id: int
    patient_id: Optional[int]
    status: DiscountRequestStatus
    discount_percentage: Decimal
    original_price: Decimal
    discounted_price: Decimal
    reason: Optional[str]
    rejection_reason: Optional[str]
    approval_notes: Optional[str]
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    expiry_date: Optional[date]
    is_global: bool

class DecisionRequest(BaseModel):
    notes: Optional[str] = None

class ValidateApplicationResp(BaseModel):
    valid: bool

def to_details(discount: DiscountRequest) -> DiscountRequestDetails:
    return DiscountRequestDetails.model_validate(discount.as_dict())

@router.get("", response_model=Page[DiscountRequestDetails])
def list_discount_requests(
    status: Optional[DiscountRequestStatus] = None,
    pagination: PaginationInput = Depends(),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return discount_service.list_discount_requests(db, actor, pagination, status, to_details)

@router.post("", response_model=DiscountRequestDetails)
def create_discount_request(req: CreateDiscountRequest, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(discount_service.create_discount_request(db, actor, req))

@router.put("/{request_id}", response_model=DiscountRequestDetails)
def update_discount_request(request_id: int, req: UpdateDiscountRequest, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(discount_service.update_discount_request(db, request_id, actor, req))

@router.post("/{request_id}/approve", response_model=DiscountRequestDetails)
def approve_discount_request(request_id: int, req: DecisionRequest, actor: Actor = Depends(require_roles(Role.ADMIN)), db: Session = Depends(get_db)):
    if not discount_service.get_discount_request(db, request_id).is_pending():
        raise StateError("Only pending discount requests can be approved")
    return to_details(discount_service.approve_discount_request(db, request_id, actor, req.notes))

@router.post("/{request_id}/reject", response_model=DiscountRequestDetails)
def reject_discount_request(request_id: int, req: DecisionRequest, actor: Actor = Depends(require_roles(Role.ADMIN)), db: Session = Depends(get_db)):
    if not discount_service.get_discount_request(db, request_id).is_pending():
        raise StateError("Only pending discount requests can be rejected")
    return to_details(discount_service.reject_discount_request(db, request_id, actor, req.notes))

@router.delete("/{request_id}", response_model=SuccessResp)
def delete_discount_request(request_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    discount_service.delete_discount_request(db, request_id, actor)
    return SuccessResp(success=True)

# Resolution

@router.get("/products/{product_id}/best", response_model=Optional[DiscountOffer])
def get_best_discount(product_id: int, patient_id: Optional[int] = None, db: Session = Depends(get_db)):
    return discount_service.resolve(db, product_id, patient_id)

@router.get("/products/{product_id}/active", response_model=list[DiscountOffer])
def get_active_discounts(product_id: int, db: Session = Depends(get_db)):
    return discount_service.active_discounts_for_product(db, product_id)

@router.get("/products/{product_id}/info", response_model=ProductDiscountInfo)
def get_product_discount_info(product_id: int, patient_id: Optional[int] = None, db: Session = Depends(get_db)):
    return discount_service.product_discount_info(db, product_id, patient_id)

@router.get("/products/{product_id}/price", response_model=PriceQuote)
def get_discounted_price(product_id: int, base_price: Decimal, patient_id: Optional[int] = None, db: Session = Depends(get_db)):
    return discount_service.price(db, base_price, product_id, patient_id)

@router.get("/products/{product_id}/validate/{discount_id}", response_model=ValidateApplicationResp)
def validate_discount_application(product_id: int, discount_id: int, patient_id: Optional[int] = None, db: Session = Depends(get_db)):
    return ValidateApplicationResp(valid=discount_service.validate_application(db, product_id, discount_id, patient_id))
