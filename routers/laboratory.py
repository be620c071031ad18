from datetime import date, datetime
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import get_db
from models.laboratory import LaboratoryOrder
from models.model_enums import LaboratoryOrderPriority, LaboratoryOrderStatus, Role
from services import laboratory as laboratory_service
from services.laboratory import CreateLabOrderRequest, LabOrderFilters, UpdateLabOrderRequest, UpdateLabStatusRequest
from utils.auth import Actor
from utils.fastapi import SuccessResp, default_resp
from utils.pagination import Page, PaginationInput
from .utils import get_actor, require_roles

router = APIRouter(dependencies=[Depends(get_actor)], responses=default_resp)

class StatusEntry(BaseModel):
    status: LaboratoryOrderStatus
    notes: Optional[str]
    user_id: int
    created_at: Optional[datetime]

class LabOrderDetails(BaseModel):
    id: int
    order_number: str
    laboratory_id: int
    laboratory_name: str
    patient_id: int
    order_id: Optional[int]
    sale_id: Optional[int]
    status: LaboratoryOrderStatus
    priority: LaboratoryOrderPriority
    estimated_completion_date: Optional[date]
    completion_date: Optional[date]
    notes: Optional[str]
    created_by: int
    status_history: list[StatusEntry] = []

class CreateFromSaleRequest(BaseModel):
    laboratory_id: Optional[int] = None
    notes: Optional[str] = None

def to_details(lab_order: LaboratoryOrder) -> LabOrderDetails:
    return LabOrderDetails(
        id=lab_order.id,
        order_number=lab_order.order_number,
        laboratory_id=lab_order.laboratory_id,
        laboratory_name=lab_order.laboratory.name,
        patient_id=lab_order.patient_id,
        order_id=lab_order.order_id,
        sale_id=lab_order.sale_id,
        status=lab_order.status,
        priority=lab_order.priority,
        estimated_completion_date=lab_order.estimated_completion_date,
        completion_date=lab_order.completion_date,
        notes=lab_order.notes,
        created_by=lab_order.created_by,
        status_history=[
            StatusEntry(status=entry.status, notes=entry.notes, user_id=entry.user_id, created_at=entry.created_at)
            for entry in lab_order.status_history
        ],
    )

@router.get("", response_model=Page[LabOrderDetails])
def list_lab_orders(
    status: Optional[LaboratoryOrderStatus] = None,
    laboratory_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    pagination: PaginationInput = Depends(),
    db: Session = Depends(get_db),
):
    filters = LabOrderFilters(status=status, laboratory_id=laboratory_id, patient_id=patient_id)
    return laboratory_service.list_lab_orders(db, filters, pagination, to_details)

@router.get("/stats", response_model=dict[str, int])
def get_lab_order_stats(db: Session = Depends(get_db)):
    return laboratory_service.lab_order_stats(db)

@router.post("", response_model=LabOrderDetails)
def create_lab_order(req: CreateLabOrderRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return to_details(laboratory_service.create_lab_order(db, actor, req))

@router.post("/from-sale/{sale_id}", response_model=Optional[LabOrderDetails])
def create_lab_order_from_sale(sale_id: int, req: CreateFromSaleRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    lab_order = laboratory_service.create_from_sale(db, sale_id, actor, req.laboratory_id, req.notes)
    return to_details(lab_order) if lab_order else None

@router.get("/{lab_order_id}", response_model=LabOrderDetails)
def get_lab_order(lab_order_id: int, db: Session = Depends(get_db)):
    return to_details(laboratory_service.get_lab_order_or_404(db, lab_order_id))

@router.put("/{lab_order_id}", response_model=LabOrderDetails)
def update_lab_order(lab_order_id: int, req: UpdateLabOrderRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return to_details(laboratory_service.update_lab_order(db, lab_order_id, actor, req))

@router.put("/{lab_order_id}/status", response_model=LabOrderDetails)
def update_lab_order_status(lab_order_id: int, req: UpdateLabStatusRequest, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(laboratory_service.update_status(db, lab_order_id, actor, req))

@router.delete("/{lab_order_id}", response_model=SuccessResp)
def delete_lab_order(lab_order_id: int, actor: Actor = Depends(require_roles(Role.ADMIN)), db: Session = Depends(get_db)):
    laboratory_service.delete_lab_order(db, lab_order_id, actor)
    return SuccessResp(success=True)
