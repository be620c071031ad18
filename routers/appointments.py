from datetime import date, datetime
from typing import Literal, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import get_db
from models.appointment import Appointment
from models.model_enums import AppointmentStatus, Role
from repository.appointment import AppointmentFilters
from services import appointment as appointment_service
from services.appointment import CompleteRequest, CreateAppointmentRequest, RescheduleRequest
from utils.auth import Actor
from utils.fastapi import CreateResp, SuccessResp, default_resp
from utils.pagination import Page, PaginationInput
from .utils import get_actor, require_roles

router = APIRouter(dependencies=[Depends(get_actor)], responses=default_resp)

class AppointmentDetails(BaseModel):
    id: int
    patient_id: int
    patient_name: str
    specialist_id: int
    specialist_name: str
    receptionist_id: Optional[int]
    taken_by_id: Optional[int]
    scheduled_at: datetime
    notes: Optional[str]
    status: AppointmentStatus
    taken_at: Optional[datetime]
    paused_at: Optional[datetime]
    resumed_at: Optional[datetime]
    completed_at: Optional[datetime]
    is_billed: bool
    billed_at: Optional[datetime]
    sale_id: Optional[int]

def to_details(appointment: Appointment) -> AppointmentDetails:
    return AppointmentDetails(
        id=appointment.id,
        patient_id=appointment.patient_id,
        patient_name=appointment.patient.full_name,
        specialist_id=appointment.specialist_id,
        specialist_name=appointment.specialist.name,
        receptionist_id=appointment.receptionist_id,
        taken_by_id=appointment.taken_by_id,
        scheduled_at=appointment.scheduled_at,
        notes=appointment.notes,
        status=appointment.status,
        taken_at=appointment.taken_at,
        paused_at=appointment.paused_at,
        resumed_at=appointment.resumed_at,
        completed_at=appointment.completed_at,
        is_billed=bool(appointment.is_billed),
        billed_at=appointment.billed_at,
        sale_id=appointment.sale_id,
    )

@router.get("", response_model=Page[AppointmentDetails])
def list_appointments(
    status: Optional[AppointmentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    patient_id: Optional[int] = None,
    specialist_id: Optional[int] = None,
    search: Optional[str] = None,
    include_billed: bool = False,
    view: Optional[Literal['in_progress']] = None,
    pagination: PaginationInput = Depends(),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    filters = AppointmentFilters(
        status=status,
        start_date=start_date,
        end_date=end_date,
        patient_id=patient_id,
        specialist_id=specialist_id,
        search=search,
        include_billed=include_billed,
        view=view,
    )
    return appointment_service.list_appointments(db, actor, filters, pagination, to_details)

@router.post("", response_model=CreateResp)
def create_appointment(req: CreateAppointmentRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    appointment = appointment_service.create_appointment(db, actor, req)
    return CreateResp(id=appointment.id)

@router.get("/{appointment_id}", response_model=AppointmentDetails)
def get_appointment(appointment_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return to_details(appointment_service.get_visible_appointment(db, appointment_id, actor))

@router.post("/{appointment_id}/take", response_model=AppointmentDetails)
def take_appointment(appointment_id: int, actor: Actor = Depends(require_roles(Role.SPECIALIST)), db: Session = Depends(get_db)):
    return to_details(appointment_service.take_appointment(db, appointment_id, actor))

@router.post("/{appointment_id}/pause", response_model=AppointmentDetails)
def pause_appointment(appointment_id: int, actor: Actor = Depends(require_roles(Role.SPECIALIST)), db: Session = Depends(get_db)):
    return to_details(appointment_service.pause_appointment(db, appointment_id, actor))

@router.post("/{appointment_id}/resume", response_model=AppointmentDetails)
def resume_appointment(appointment_id: int, actor: Actor = Depends(require_roles(Role.SPECIALIST)), db: Session = Depends(get_db)):
    return to_details(appointment_service.resume_appointment(db, appointment_id, actor))

@router.post("/{appointment_id}/complete", response_model=AppointmentDetails)
def complete_appointment(appointment_id: int, req: CompleteRequest, actor: Actor = Depends(require_roles(Role.SPECIALIST)), db: Session = Depends(get_db)):
    return to_details(appointment_service.complete_appointment(db, appointment_id, actor, req))

@router.put("/{appointment_id}/reschedule", response_model=AppointmentDetails)
def reschedule_appointment(appointment_id: int, req: RescheduleRequest, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    return to_details(appointment_service.reschedule_appointment(db, appointment_id, actor, req))

@router.delete("/{appointment_id}", response_model=SuccessResp)
def delete_appointment(appointment_id: int, actor: Actor = Depends(require_roles(Role.ADMIN, Role.RECEPTIONIST)), db: Session = Depends(get_db)):
    appointment_service.delete_appointment(db, appointment_id, actor)
    return SuccessResp(success=True)
