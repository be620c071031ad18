import logging
from datetime import date
from typing import Optional
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from config import LAB_ORDER_NUMBER_PREFIX
from models.clinic import Patient
from models.laboratory import LaboratoryOrder, LaboratoryOrderStatusEntry
from models.model_enums import LaboratoryOrderPriority, LaboratoryOrderStatus
from models.orders import Order
from models.payments import Sale
from repository.laboratory import (
    count_lab_orders_by_status,
    get_default_laboratory,
    get_lab_order,
    get_lab_order_for_sale,
    get_laboratory,
)
from repository.numbering import flush_numbered, is_unique_violation, next_document_number, retry_on_collision
from repository.payments import get_sale
from services import orders
from utils.auth import Actor
from utils.errors import NotFoundError, StateError
from utils.pagination import PaginationInput, paginate
from utils.transaction import unit_of_work

class SaleItemHint(BaseModel):
    product_id: Optional[int] = None
    lens_id: Optional[int] = None

class LabTrigger(BaseModel):
    '''
    Parts of the sale creation payload that decide whether lenses must be fabricated
    '''
    laboratory_id: Optional[int] = None
    laboratory_notes: Optional[str] = None
    items: list[SaleItemHint] = []
    contains_lenses: bool = False
    lens_items: bool = False

class CreateLabOrderRequest(BaseModel):
    laboratory_id: int
    patient_id: int
    order_id: Optional[int] = None
    sale_id: Optional[int] = None
    status: LaboratoryOrderStatus = LaboratoryOrderStatus.PENDING
    priority: LaboratoryOrderPriority = LaboratoryOrderPriority.NORMAL
    estimated_completion_date: Optional[date] = None
    notes: Optional[str] = None

class UpdateLabOrderRequest(BaseModel):
    priority: Optional[LaboratoryOrderPriority] = None
    estimated_completion_date: Optional[date] = None
    completion_date: Optional[date] = None
    notes: Optional[str] = None

class UpdateLabStatusRequest(BaseModel):
    status: LaboratoryOrderStatus
    notes: Optional[str] = None

class LabOrderFilters(BaseModel):
    status: Optional[LaboratoryOrderStatus] = None
    laboratory_id: Optional[int] = None
    patient_id: Optional[int] = None

# Fabrication has started at the laboratory
NON_DELETABLE_STATUSES = [
    LaboratoryOrderStatus.IN_PROCESS,
    LaboratoryOrderStatus.SENT_TO_LAB,
    LaboratoryOrderStatus.READY_FOR_DELIVERY,
    LaboratoryOrderStatus.DELIVERED,
    LaboratoryOrderStatus.CANCELLED,
]

def needs_lab_order(db: Session, sale: Sale, trigger: LabTrigger) -> bool:
    if trigger.laboratory_id:
        return True
    if sale.order_id and any(item.is_lens for item in orders.get_items(db, sale.order_id)):
        return True
    if any(item.lens_id for item in trigger.items):
        return True
    return trigger.contains_lenses or trigger.lens_items

def _new_lab_order(db: Session, actor_id: int, req: CreateLabOrderRequest, history_notes: str) -> LaboratoryOrder:
    lab_order = LaboratoryOrder(
        order_number=next_document_number(db, LaboratoryOrder, LaboratoryOrder.order_number, LAB_ORDER_NUMBER_PREFIX),
        laboratory_id=req.laboratory_id,
        patient_id=req.patient_id,
        order_id=req.order_id,
        sale_id=req.sale_id,
        status=req.status,
        priority=req.priority,
        estimated_completion_date=req.estimated_completion_date,
        notes=req.notes,
        created_by=actor_id,
    )
    lab_order.status_history.append(LaboratoryOrderStatusEntry(status=req.status, notes=history_notes, user_id=actor_id))
    db.add(lab_order)
    flush_numbered(db, LaboratoryOrder.order_number)
    return lab_order

def open_for_sale(db: Session, sale: Sale, laboratory_id: Optional[int] = None, notes: Optional[str] = None) -> LaboratoryOrder | None:
    '''
    Idempotent: a sale that already has a laboratory order gets it back unchanged.
    Laboratory falls back to the order's laboratory, then the default one. With no laboratory
    at all nothing is created and None is returned.
    Runs inside the caller's unit of work.
    '''
    existing = get_lab_order_for_sale(db, sale.id)
    if existing:
        logging.info(f"Sale {sale.id} already has laboratory order {existing.order_number}")
        return existing

    order = db.query(Order).filter(Order.id == sale.order_id).first() if sale.order_id else None
    if not laboratory_id and order and order.laboratory_id:
        laboratory_id = order.laboratory_id
    if not laboratory_id:
        laboratory = get_default_laboratory(db)
        if not laboratory:
            logging.warning(f"Sale {sale.id} needs a laboratory order but no laboratory is registered, skipping")
            return None
        laboratory_id = laboratory.id

    req = CreateLabOrderRequest(
        laboratory_id=laboratory_id,
        patient_id=order.patient_id if order else sale.patient_id,
        order_id=sale.order_id,
        sale_id=sale.id,
        notes=notes or f"Created automatically from sale {sale.sale_number}",
    )
    try:
        with db.begin_nested():
            lab_order = _new_lab_order(db, sale.created_by, req, history_notes="Laboratory order created from sale")
    except IntegrityError as e:
        # Another writer opened the order for this sale after our lookup
        if not is_unique_violation(e, LaboratoryOrder.sale_id):
            raise
        existing = get_lab_order_for_sale(db, sale.id)
        logging.info(f"Sale {sale.id} got laboratory order {existing.order_number} from a concurrent writer")
        return existing
    logging.info(f"Laboratory order {lab_order.order_number} opened for sale {sale.id} at laboratory {laboratory_id}")
    return lab_order

@retry_on_collision
def create_from_sale(db: Session, sale_id: int, actor: Actor, laboratory_id: Optional[int] = None, notes: Optional[str] = None) -> LaboratoryOrder | None:
    with unit_of_work(db, "laboratory_order.create_from_sale", actor, sale_id=sale_id):
        sale = get_sale(db, sale_id)
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        if laboratory_id and not get_laboratory(db, laboratory_id):
            raise NotFoundError(f"Laboratory {laboratory_id} not found")
        lab_order = open_for_sale(db, sale, laboratory_id, notes)
    return lab_order

@retry_on_collision
def create_lab_order(db: Session, actor: Actor, req: CreateLabOrderRequest) -> LaboratoryOrder:
    with unit_of_work(db, "laboratory_order.create", actor, patient_id=req.patient_id, sale_id=req.sale_id):
        if not get_laboratory(db, req.laboratory_id):
            raise NotFoundError(f"Laboratory {req.laboratory_id} not found")
        if not db.query(Patient).filter(Patient.id == req.patient_id).first():
            raise NotFoundError(f"Patient {req.patient_id} not found")
        if req.sale_id:
            existing = get_lab_order_for_sale(db, req.sale_id)
            if existing:
                return existing
        lab_order = _new_lab_order(db, actor.id, req, history_notes="Initial status")
    logging.info(f"Laboratory order {lab_order.order_number} created by {actor.id}")
    return lab_order

def get_lab_order_or_404(db: Session, lab_order_id: int) -> LaboratoryOrder:
    lab_order = get_lab_order(db, lab_order_id)
    if not lab_order:
        raise NotFoundError(f"Laboratory order {lab_order_id} not found")
    return lab_order

def list_lab_orders(db: Session, filters: LabOrderFilters, pagination: PaginationInput, transform=None):
    query = db.query(LaboratoryOrder)
    if filters.status:
        query = query.filter(LaboratoryOrder.status == filters.status)
    if filters.laboratory_id:
        query = query.filter(LaboratoryOrder.laboratory_id == filters.laboratory_id)
    if filters.patient_id:
        query = query.filter(LaboratoryOrder.patient_id == filters.patient_id)
    return paginate(query.order_by(LaboratoryOrder.id.desc()), db, pagination, transform)

def update_lab_order(db: Session, lab_order_id: int, actor: Actor, req: UpdateLabOrderRequest) -> LaboratoryOrder:
    '''
    Edits the descriptive fields only, status changes go through update_status
    '''
    changes = req.model_dump(exclude_unset=True)
    with unit_of_work(db, "laboratory_order.update", actor, laboratory_order_id=lab_order_id, fields=sorted(changes)):
        lab_order = get_lab_order_or_404(db, lab_order_id)
        lab_order.update_vars(changes)
    logging.info(f"Laboratory order {lab_order_id} updated by {actor.id}: {sorted(changes)}")
    return lab_order

def update_status(db: Session, lab_order_id: int, actor: Actor, req: UpdateLabStatusRequest) -> LaboratoryOrder:
    '''
    Any status may follow any other, every change is recorded in the history
    '''
    with unit_of_work(db, "laboratory_order.update_status", actor, laboratory_order_id=lab_order_id, status=req.status.value):
        lab_order = get_lab_order_or_404(db, lab_order_id)
        previous = lab_order.status
        lab_order.status = req.status
        lab_order.status_history.append(LaboratoryOrderStatusEntry(status=req.status, notes=req.notes, user_id=actor.id))
    logging.info(f"Laboratory order {lab_order_id}: {previous.value} -> {req.status.value} by {actor.id}")
    return lab_order

def delete_lab_order(db: Session, lab_order_id: int, actor: Actor):
    with unit_of_work(db, "laboratory_order.delete", actor, laboratory_order_id=lab_order_id):
        lab_order = get_lab_order_or_404(db, lab_order_id)
        if lab_order.status in NON_DELETABLE_STATUSES:
            raise StateError(f"Laboratory order {lab_order.order_number} is {lab_order.status.value} and cannot be deleted")
        db.delete(lab_order)
    logging.info(f"Laboratory order {lab_order_id} deleted by {actor.id}")

def lab_order_stats(db: Session) -> dict[str, int]:
    counts = count_lab_orders_by_status(db)
    stats = {status.value: count for status, count in counts.items()}
    stats['total'] = sum(counts.values())
    return stats
