# Keeps Order.payment_status and the appointment billing fields in line with a sale.
# Nothing else writes those fields. Every function here runs inside the caller's
# unit of work and never commits.
import logging
from sqlalchemy.orm import Session
from models.appointment import Appointment
from models.model_enums import PaymentStatus
from models.payments import Sale
from services import orders
from utils import local_datetime

def _locked_appointment(db: Session, appointment_id: int) -> Appointment | None:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).with_for_update().first()
    if not appointment:
        logging.warning(f"Billing: appointment {appointment_id} not found")
    return appointment

def propagate(db: Session, sale: Sale):
    '''
    Run after every ledger mutation. Paid marks the appointment billed, anything else
    unbills it but keeps the sale link.
    '''
    if sale.order_id:
        orders.apply_payment_status(db, sale.order_id, sale.payment_status)

    if not sale.appointment_id:
        return
    appointment = _locked_appointment(db, sale.appointment_id)
    if not appointment:
        return

    appointment.sale_id = sale.id
    if sale.payment_status == PaymentStatus.PAID:
        if not appointment.is_billed:
            appointment.billed_at = local_datetime.now()
        appointment.is_billed = True
    else:
        appointment.is_billed = False
        appointment.billed_at = None

def release_appointment(db: Session, appointment_id: int):
    '''
    Hard unbilling used when the sale goes away, the appointment is free to be billed again
    '''
    appointment = _locked_appointment(db, appointment_id)
    if not appointment:
        return
    appointment.is_billed = False
    appointment.billed_at = None
    appointment.sale_id = None

def on_sale_cancelled(db: Session, sale: Sale):
    # Order.payment_status is left at the sale's last status
    if sale.order_id:
        orders.apply_cancelled(db, sale.order_id)
    if sale.appointment_id:
        release_appointment(db, sale.appointment_id)
    logging.info(f"Billing: released order {sale.order_id} and appointment {sale.appointment_id} of cancelled sale {sale.id}")

def on_sale_deleted(db: Session, sale: Sale):
    # Unlike cancellation, the order goes back to pending whatever the sale had collected
    if sale.order_id:
        orders.apply_payment_status(db, sale.order_id, PaymentStatus.PENDING)
    if sale.appointment_id:
        release_appointment(db, sale.appointment_id)
    logging.info(f"Billing: released order {sale.order_id} and appointment {sale.appointment_id} of deleted sale {sale.id}")
