import logging
from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models import get_staff
from models.appointment import Appointment
from models.clinic import Patient
from models.model_enums import AppointmentStatus, Role
from repository.appointment import (
    AppointmentFilters,
    find_active_appointment,
    get_appointment,
    lock_specialist,
    visible_appointments_query,
)
from utils import local_datetime
from utils.auth import Actor
from utils.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from utils.fastapi import ExceptionCode
from utils.pagination import PaginationInput, paginate
from utils.transaction import unit_of_work

class CreateAppointmentRequest(BaseModel):
    patient_id: int
    specialist_id: int
    scheduled_at: datetime
    notes: Optional[str] = None

class RescheduleRequest(BaseModel):
    scheduled_at: datetime
    notes: Optional[str] = None

class CompleteRequest(BaseModel):
    notes: Optional[str] = None

def _load(db: Session, appointment_id: int) -> Appointment:
    appointment = get_appointment(db, appointment_id, for_update=True)
    if not appointment:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    return appointment

def _conflict(active_id: Optional[int]):
    return ConflictError(
        "You already have an appointment in progress. Pause or complete it first.",
        conflict_id=active_id,
        title="Appointment In Progress",
        code=ExceptionCode.APPOINTMENT_IN_PROGRESS,
    )

def _hold(db: Session, appointment: Appointment, actor: Actor):
    '''
    Puts the appointment in progress for the actor. Shared by take and resume.
    The specialist row lock serialises concurrent claims, the partial unique index
    on (taken_by_id) WHERE status = 'IN_PROGRESS' catches anything that slips through.
    '''
    lock_specialist(db, actor.id)
    active = find_active_appointment(db, actor.id, exclude_id=appointment.id)
    if active:
        raise _conflict(active.id)

    appointment_id = appointment.id
    curr_time = local_datetime.now()
    if appointment.status == AppointmentStatus.SCHEDULED:
        appointment.taken_at = curr_time
    else:
        appointment.resumed_at = curr_time
    appointment.status = AppointmentStatus.IN_PROGRESS
    appointment.taken_by_id = actor.id

    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logging.warning(f"Appointment {appointment_id}: concurrent claim by specialist {actor.id} rejected by index: {e.orig}")
        active = find_active_appointment(db, actor.id, exclude_id=appointment_id)
        raise _conflict(active.id if active else None)

def create_appointment(db: Session, actor: Actor, req: CreateAppointmentRequest) -> Appointment:
    with unit_of_work(db, "appointment.create", actor, patient_id=req.patient_id, specialist_id=req.specialist_id):
        patient = db.query(Patient).filter(Patient.id == req.patient_id).first()
        if not patient:
            raise NotFoundError(f"Patient {req.patient_id} not found")
        specialist = get_staff(db, req.specialist_id)
        if not specialist or specialist.deleted:
            raise NotFoundError(f"Specialist {req.specialist_id} not found")
        if specialist.role != Role.SPECIALIST:
            raise ValidationError(f"Staff account {req.specialist_id} is not a specialist")

        appointment = Appointment(
            patient_id=req.patient_id,
            specialist_id=req.specialist_id,
            receptionist_id=actor.id,
            scheduled_at=req.scheduled_at,
            notes=req.notes,
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
    logging.info(f"Appointment {appointment.id} scheduled for patient {req.patient_id} with specialist {req.specialist_id}")
    return appointment

def get_visible_appointment(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not appointment:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    if actor.role == Role.SPECIALIST and appointment.specialist_id != actor.id:
        raise ForbiddenError("You can only view your own appointments")
    return appointment

def list_appointments(db: Session, actor: Actor, filters: AppointmentFilters, pagination: PaginationInput, transform=None):
    query = visible_appointments_query(db, actor, filters)
    return paginate(query, db, pagination, transform)

def take_appointment(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    with unit_of_work(db, "appointment.take", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise StateError(f"Only scheduled appointments can be taken, appointment is {appointment.status.value}")
        _hold(db, appointment, actor)
    logging.info(f"Appointment {appointment_id} taken by specialist {actor.id}")
    return appointment

def pause_appointment(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    with unit_of_work(db, "appointment.pause", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status != AppointmentStatus.IN_PROGRESS:
            raise StateError(f"Only appointments in progress can be paused, appointment is {appointment.status.value}")
        if appointment.taken_by_id != actor.id:
            raise ForbiddenError("Only the specialist holding the appointment can pause it")
        appointment.status = AppointmentStatus.PAUSED
        appointment.paused_at = local_datetime.now()
    logging.info(f"Appointment {appointment_id} paused by specialist {actor.id}")
    return appointment

def resume_appointment(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    with unit_of_work(db, "appointment.resume", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status != AppointmentStatus.PAUSED:
            raise StateError(f"Only paused appointments can be resumed, appointment is {appointment.status.value}")
        if appointment.taken_by_id != actor.id:
            raise ForbiddenError("Only the specialist holding the appointment can resume it")
        _hold(db, appointment, actor)
    logging.info(f"Appointment {appointment_id} resumed by specialist {actor.id}")
    return appointment

def complete_appointment(db: Session, appointment_id: int, actor: Actor, req: Optional[CompleteRequest] = None) -> Appointment:
    with unit_of_work(db, "appointment.complete", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status != AppointmentStatus.IN_PROGRESS:
            raise StateError(f"Only appointments in progress can be completed, appointment is {appointment.status.value}")
        if appointment.taken_by_id != actor.id:
            raise ForbiddenError("Only the specialist holding the appointment can complete it")
        appointment.status = AppointmentStatus.COMPLETED
        appointment.completed_at = local_datetime.now()
        if req and req.notes:
            appointment.notes = req.notes
    logging.info(f"Appointment {appointment_id} completed by specialist {actor.id}")
    return appointment

def reschedule_appointment(db: Session, appointment_id: int, actor: Actor, req: RescheduleRequest) -> Appointment:
    '''
    Back to scheduled from any non-terminal state. taken_by is left as is, a new take is required.
    '''
    with unit_of_work(db, "appointment.reschedule", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status == AppointmentStatus.COMPLETED:
            raise StateError("Completed appointments cannot be rescheduled")
        appointment.scheduled_at = req.scheduled_at
        if req.notes is not None:
            appointment.notes = req.notes
        appointment.status = AppointmentStatus.SCHEDULED
    logging.info(f"Appointment {appointment_id} rescheduled to {req.scheduled_at} by {actor.id}")
    return appointment

def delete_appointment(db: Session, appointment_id: int, actor: Actor):
    with unit_of_work(db, "appointment.delete", actor, appointment_id=appointment_id):
        appointment = _load(db, appointment_id)
        if appointment.status in (AppointmentStatus.COMPLETED, AppointmentStatus.IN_PROGRESS):
            raise StateError(f"Appointments that are {appointment.status.value} cannot be deleted")
        db.delete(appointment)
    logging.info(f"Appointment {appointment_id} deleted by {actor.id}")
