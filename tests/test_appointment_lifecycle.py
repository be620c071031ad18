from datetime import date, datetime, timedelta
from unittest.mock import patch
import pytest
from models.appointment import Appointment
from models.model_enums import AppointmentStatus, Role
from repository.appointment import AppointmentFilters, count_active_appointments
from services import appointment as appointment_service
from services.appointment import CompleteRequest, CreateAppointmentRequest, RescheduleRequest
from utils import local_datetime
from utils.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from utils.fastapi import ExceptionCode
from utils.pagination import PaginationInput
from tests.utils_db import TestingSessionLocal, actor_for, db, seed_appointment, seed_patient, seed_staff  # noqa: F401

@pytest.fixture
def clinic(db):
    return {
        "patient": seed_patient(db),
        "specialist": seed_staff(db, Role.SPECIALIST, "Dr. Ruiz"),
        "other_specialist": seed_staff(db, Role.SPECIALIST, "Dr. Mora"),
        "receptionist": seed_staff(db, Role.RECEPTIONIST),
        "admin": seed_staff(db, Role.ADMIN),
    }

def test_create_appointment_starts_scheduled(db, clinic):
    receptionist = actor_for(clinic["receptionist"])
    appointment = appointment_service.create_appointment(db, receptionist, CreateAppointmentRequest(
        patient_id=clinic["patient"].id,
        specialist_id=clinic["specialist"].id,
        scheduled_at=local_datetime.now() + timedelta(days=1),
    ))
    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.receptionist_id == clinic["receptionist"].id
    assert appointment.taken_by_id is None
    assert appointment.is_billed is False

def test_create_appointment_requires_specialist_role(db, clinic):
    with pytest.raises(ValidationError):
        appointment_service.create_appointment(db, actor_for(clinic["receptionist"]), CreateAppointmentRequest(
            patient_id=clinic["patient"].id,
            specialist_id=clinic["admin"].id,
            scheduled_at=local_datetime.now(),
        ))

def test_take_pause_resume_complete(db, clinic):
    specialist = actor_for(clinic["specialist"])
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"])

    taken = appointment_service.take_appointment(db, appointment.id, specialist)
    assert taken.status == AppointmentStatus.IN_PROGRESS
    assert taken.taken_by_id == specialist.id
    assert taken.taken_at is not None

    paused = appointment_service.pause_appointment(db, appointment.id, specialist)
    assert paused.status == AppointmentStatus.PAUSED
    assert paused.paused_at is not None
    # Still held while paused
    assert paused.taken_by_id == specialist.id

    resumed = appointment_service.resume_appointment(db, appointment.id, specialist)
    assert resumed.status == AppointmentStatus.IN_PROGRESS
    assert resumed.resumed_at is not None

    completed = appointment_service.complete_appointment(db, appointment.id, specialist, CompleteRequest(notes="Prescription issued"))
    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.notes == "Prescription issued"

def test_take_conflicts_with_held_appointment(db, clinic):
    specialist = actor_for(clinic["specialist"])
    first = seed_appointment(db, clinic["patient"], clinic["specialist"])
    second = seed_appointment(db, clinic["patient"], clinic["specialist"], hours_ahead=3)

    appointment_service.take_appointment(db, first.id, specialist)
    with pytest.raises(ConflictError) as exc:
        appointment_service.take_appointment(db, second.id, specialist)

    assert exc.value.conflict_id == first.id
    assert exc.value.code == ExceptionCode.APPOINTMENT_IN_PROGRESS
    assert exc.value.status_code == 409
    assert db.query(Appointment).filter(Appointment.id == second.id).first().status == AppointmentStatus.SCHEDULED

def test_paused_appointment_does_not_block_take(db, clinic):
    specialist = actor_for(clinic["specialist"])
    first = seed_appointment(db, clinic["patient"], clinic["specialist"])
    second = seed_appointment(db, clinic["patient"], clinic["specialist"], hours_ahead=3)

    appointment_service.take_appointment(db, first.id, specialist)
    appointment_service.pause_appointment(db, first.id, specialist)
    appointment_service.take_appointment(db, second.id, specialist)

    # Resuming the first one now conflicts with the second
    with pytest.raises(ConflictError) as exc:
        appointment_service.resume_appointment(db, first.id, specialist)
    assert exc.value.conflict_id == second.id
    assert count_active_appointments(db, specialist.id) == 1

def test_other_specialists_are_independent(db, clinic):
    first = seed_appointment(db, clinic["patient"], clinic["specialist"])
    second = seed_appointment(db, clinic["patient"], clinic["other_specialist"])

    appointment_service.take_appointment(db, first.id, actor_for(clinic["specialist"]))
    appointment_service.take_appointment(db, second.id, actor_for(clinic["other_specialist"]))

    assert count_active_appointments(db, clinic["specialist"].id) == 1
    assert count_active_appointments(db, clinic["other_specialist"].id) == 1

def test_pause_by_other_specialist_is_forbidden(db, clinic):
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"])
    appointment_service.take_appointment(db, appointment.id, actor_for(clinic["specialist"]))

    with pytest.raises(ForbiddenError):
        appointment_service.pause_appointment(db, appointment.id, actor_for(clinic["other_specialist"]))
    with pytest.raises(ForbiddenError):
        appointment_service.complete_appointment(db, appointment.id, actor_for(clinic["other_specialist"]))

def test_resume_by_other_specialist_is_forbidden(db, clinic):
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"], status=AppointmentStatus.PAUSED)
    with pytest.raises(ForbiddenError):
        appointment_service.resume_appointment(db, appointment.id, actor_for(clinic["other_specialist"]))

@pytest.mark.parametrize("status, allowed", [
    (AppointmentStatus.SCHEDULED, {"take"}),
    (AppointmentStatus.IN_PROGRESS, {"pause", "complete"}),
    (AppointmentStatus.PAUSED, {"resume"}),
    (AppointmentStatus.COMPLETED, set()),
])
def test_only_listed_transitions_are_valid(db, clinic, status, allowed):
    specialist = actor_for(clinic["specialist"])
    transitions = {
        "take": appointment_service.take_appointment,
        "pause": appointment_service.pause_appointment,
        "resume": appointment_service.resume_appointment,
        "complete": appointment_service.complete_appointment,
    }
    for name, transition in transitions.items():
        appointment = seed_appointment(db, clinic["patient"], clinic["specialist"], status=status)
        if name in allowed:
            transition(db, appointment.id, specialist)
            # Leave the specialist free for the next check
            db.query(Appointment).filter(Appointment.id == appointment.id).delete()
            db.commit()
        else:
            with pytest.raises(StateError):
                transition(db, appointment.id, specialist)
            db.query(Appointment).filter(Appointment.id == appointment.id).delete()
            db.commit()

def test_reschedule_resets_to_scheduled(db, clinic):
    specialist = actor_for(clinic["specialist"])
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"])
    appointment_service.take_appointment(db, appointment.id, specialist)

    new_time = local_datetime.now() + timedelta(days=2)
    rescheduled = appointment_service.reschedule_appointment(
        db, appointment.id, actor_for(clinic["receptionist"]), RescheduleRequest(scheduled_at=new_time, notes="Patient asked to move")
    )
    assert rescheduled.status == AppointmentStatus.SCHEDULED
    assert rescheduled.notes == "Patient asked to move"
    assert count_active_appointments(db, specialist.id) == 0

    # A fresh take is required and works
    assert appointment_service.take_appointment(db, appointment.id, specialist).status == AppointmentStatus.IN_PROGRESS

def test_reschedule_completed_is_rejected(db, clinic):
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"], status=AppointmentStatus.COMPLETED)
    with pytest.raises(StateError):
        appointment_service.reschedule_appointment(
            db, appointment.id, actor_for(clinic["receptionist"]), RescheduleRequest(scheduled_at=local_datetime.now())
        )

@pytest.mark.parametrize("status", [AppointmentStatus.COMPLETED, AppointmentStatus.IN_PROGRESS])
def test_delete_forbidden_for_completed_and_in_progress(db, clinic, status):
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"], status=status)
    with pytest.raises(StateError):
        appointment_service.delete_appointment(db, appointment.id, actor_for(clinic["receptionist"]))
    assert db.query(Appointment).filter(Appointment.id == appointment.id).first() is not None

@pytest.mark.parametrize("status", [AppointmentStatus.SCHEDULED, AppointmentStatus.PAUSED])
def test_delete_allowed_otherwise(db, clinic, status):
    appointment = seed_appointment(db, clinic["patient"], clinic["specialist"], status=status)
    appointment_service.delete_appointment(db, appointment.id, actor_for(clinic["receptionist"]))
    assert db.query(Appointment).filter(Appointment.id == appointment.id).first() is None

def test_missing_appointment(db, clinic):
    with pytest.raises(NotFoundError):
        appointment_service.take_appointment(db, 9999, actor_for(clinic["specialist"]))

def test_concurrent_take_is_caught_by_unique_index(db, clinic):
    '''
    Simulates a second transaction that passed the conflict check before the first
    one committed: the read is blinded and the partial unique index has to reject it.
    '''
    specialist = actor_for(clinic["specialist"])
    first = seed_appointment(db, clinic["patient"], clinic["specialist"])
    second = seed_appointment(db, clinic["patient"], clinic["specialist"], hours_ahead=3)
    appointment_service.take_appointment(db, first.id, specialist)

    real_lookup = appointment_service.find_active_appointment
    calls = []
    def blind_first_lookup(db, specialist_id, exclude_id=None):
        calls.append(specialist_id)
        if len(calls) == 1:
            return None
        return real_lookup(db, specialist_id, exclude_id)

    with patch("services.appointment.find_active_appointment", side_effect=blind_first_lookup):
        with pytest.raises(ConflictError) as exc:
            appointment_service.take_appointment(db, second.id, specialist)

    assert exc.value.conflict_id == first.id
    assert count_active_appointments(db, specialist.id) == 1
    assert db.query(Appointment).filter(Appointment.id == second.id).first().status == AppointmentStatus.SCHEDULED

def test_take_interleaved_with_another_session(db, clinic):
    '''
    Session A checks for an active appointment, session B takes and commits one,
    then A writes its claim: the unique index rejects A.
    '''
    specialist = actor_for(clinic["specialist"])
    first = seed_appointment(db, clinic["patient"], clinic["specialist"])
    second = seed_appointment(db, clinic["patient"], clinic["specialist"], hours_ahead=3)

    real_lookup = appointment_service.find_active_appointment
    other_session = TestingSessionLocal()
    calls = []
    def lookup_then_let_other_session_commit(session, specialist_id, exclude_id=None):
        calls.append(specialist_id)
        active = real_lookup(session, specialist_id, exclude_id)
        if len(calls) == 1:
            appointment_service.take_appointment(other_session, first.id, specialist)
        return active

    try:
        with patch("services.appointment.find_active_appointment", side_effect=lookup_then_let_other_session_commit):
            with pytest.raises(ConflictError) as exc:
                appointment_service.take_appointment(db, second.id, specialist)
    finally:
        other_session.close()

    assert exc.value.conflict_id == first.id
    assert count_active_appointments(db, specialist.id) == 1
    db.expire_all()
    assert db.query(Appointment).filter(Appointment.id == first.id).first().status == AppointmentStatus.IN_PROGRESS
    assert db.query(Appointment).filter(Appointment.id == second.id).first().status == AppointmentStatus.SCHEDULED

def test_sequential_takes_keep_one_active_appointment(db, clinic):
    specialist = actor_for(clinic["specialist"])
    appointments = [seed_appointment(db, clinic["patient"], clinic["specialist"], hours_ahead=i) for i in range(1, 6)]

    for appointment in appointments:
        try:
            appointment_service.take_appointment(db, appointment.id, specialist)
        except ConflictError:
            pass
        assert count_active_appointments(db, specialist.id) <= 1

    holder = appointments[0]
    appointment_service.pause_appointment(db, holder.id, specialist)
    for appointment in appointments[1:]:
        try:
            appointment_service.take_appointment(db, appointment.id, specialist)
        except ConflictError:
            pass
        assert count_active_appointments(db, specialist.id) == 1

class TestListing:
    @pytest.fixture
    def schedule(self, db, clinic):
        tz = local_datetime.clinictz
        specialist = clinic["specialist"]
        other = clinic["other_specialist"]
        patient = clinic["patient"]
        rows = {
            "scheduled": seed_appointment(db, patient, specialist),
            "mine_active": seed_appointment(db, patient, specialist, status=AppointmentStatus.IN_PROGRESS),
            "completed": seed_appointment(db, patient, specialist, status=AppointmentStatus.COMPLETED),
            "other": seed_appointment(db, patient, other),
        }
        rows["billed"] = seed_appointment(db, patient, other, status=AppointmentStatus.COMPLETED)
        rows["billed"].is_billed = True
        rows["dated"] = seed_appointment(db, patient, other)
        rows["dated"].scheduled_at = tz.localize(datetime(2026, 1, 10, 9, 30))
        db.commit()
        return rows

    def _ids(self, db, actor, **filters):
        page = appointment_service.list_appointments(db, actor, AppointmentFilters(**filters), PaginationInput(per_page=100))
        return {appointment.id for appointment in page.data}

    def test_specialist_sees_only_own(self, db, clinic, schedule):
        ids = self._ids(db, actor_for(clinic["specialist"]))
        assert ids == {schedule["scheduled"].id, schedule["mine_active"].id, schedule["completed"].id}

    def test_specialist_in_progress_view(self, db, clinic, schedule):
        ids = self._ids(db, actor_for(clinic["specialist"]), view="in_progress")
        assert ids == {schedule["mine_active"].id}

    def test_reception_excludes_billed_by_default(self, db, clinic, schedule):
        receptionist = actor_for(clinic["receptionist"])
        assert schedule["billed"].id not in self._ids(db, receptionist)
        assert schedule["billed"].id in self._ids(db, receptionist, include_billed=True)

    def test_reception_filters(self, db, clinic, schedule):
        receptionist = actor_for(clinic["receptionist"])
        ids = self._ids(db, receptionist, specialist_id=clinic["other_specialist"].id)
        assert ids == {schedule["other"].id, schedule["dated"].id}

        ids = self._ids(db, receptionist, start_date=date(2026, 1, 10), end_date=date(2026, 1, 10))
        assert ids == {schedule["dated"].id}

        ids = self._ids(db, receptionist, search="Mora")
        assert schedule["other"].id in ids and schedule["scheduled"].id not in ids

    def test_get_restricted_for_specialist(self, db, clinic, schedule):
        with pytest.raises(ForbiddenError):
            appointment_service.get_visible_appointment(db, schedule["other"].id, actor_for(clinic["specialist"]))
        found = appointment_service.get_visible_appointment(db, schedule["other"].id, actor_for(clinic["admin"]))
        assert found.id == schedule["other"].id
