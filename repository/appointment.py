from datetime import date, timedelta
from typing import Literal, Optional
from pydantic import BaseModel
from sqlalchemy import and_, false, or_
from sqlalchemy.orm import Session, joinedload
from models.appointment import Appointment
from models.clinic import Patient, StaffAccount
from models.model_enums import AppointmentStatus, Role
from utils.auth import Actor
from utils import local_datetime

class AppointmentFilters(BaseModel):
    status: Optional[AppointmentStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    patient_id: Optional[int] = None
    specialist_id: Optional[int] = None
    search: Optional[str] = None
    include_billed: bool = False
    view: Optional[Literal['in_progress']] = None

def get_appointment(db: Session, appointment_id: int, for_update: bool = False) -> Appointment | None:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update()
    return query.first()

def lock_specialist(db: Session, specialist_id: int) -> StaffAccount | None:
    '''
    Serialises take/resume for one specialist: the staff row is the per-specialist sentinel.
    No-op on SQLite, which serialises writers anyway.
    '''
    return db.query(StaffAccount).filter(StaffAccount.id == specialist_id).with_for_update().first()

def find_active_appointment(db: Session, specialist_id: int, exclude_id: Optional[int] = None) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.taken_by_id == specialist_id,
        Appointment.status == AppointmentStatus.IN_PROGRESS,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.order_by(Appointment.id.asc()).first()

def count_active_appointments(db: Session, specialist_id: int) -> int:
    return db.query(Appointment).filter(
        Appointment.taken_by_id == specialist_id,
        Appointment.status == AppointmentStatus.IN_PROGRESS,
    ).count()

def visible_appointments_query(db: Session, actor: Actor, filters: AppointmentFilters):
    query = db.query(Appointment).options(
        joinedload(Appointment.patient),
        joinedload(Appointment.specialist),
        joinedload(Appointment.taken_by),
    )

    # Role based visibility
    if actor.role == Role.SPECIALIST:
        query = query.filter(Appointment.specialist_id == actor.id)
        if filters.view == 'in_progress':
            query = query.filter(
                Appointment.status == AppointmentStatus.IN_PROGRESS,
                Appointment.taken_by_id == actor.id,
            )
        elif filters.status is None:
            query = query.filter(or_(
                Appointment.status.in_([AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED]),
                and_(
                    Appointment.status.in_([AppointmentStatus.IN_PROGRESS, AppointmentStatus.PAUSED]),
                    Appointment.taken_by_id == actor.id,
                ),
            ))
    elif actor.role in (Role.ADMIN, Role.RECEPTIONIST):
        if not filters.include_billed:
            query = query.filter(or_(Appointment.is_billed == False, Appointment.is_billed == None))  # noqa: E711, E712
        if filters.patient_id:
            query = query.filter(Appointment.patient_id == filters.patient_id)
        if filters.specialist_id:
            query = query.filter(Appointment.specialist_id == filters.specialist_id)
    else:
        return query.filter(false())

    if filters.status is not None:
        query = query.filter(Appointment.status == filters.status)

    # Dates are interpreted in clinic time
    if filters.start_date:
        query = query.filter(Appointment.scheduled_at >= local_datetime.midnight(filters.start_date))
    if filters.end_date:
        query = query.filter(Appointment.scheduled_at < local_datetime.midnight(filters.end_date + timedelta(days=1)))

    if filters.search:
        term = f"%{filters.search}%"
        query = query.filter(or_(
            Appointment.patient.has(or_(
                Patient.first_name.ilike(term),
                Patient.last_name.ilike(term),
                Patient.identification.ilike(term),
            )),
            Appointment.specialist.has(StaffAccount.name.ilike(term)),
        ))

    return query.order_by(Appointment.scheduled_at.asc(), Appointment.id.asc())
