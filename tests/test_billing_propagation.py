from decimal import Decimal
import pytest
from models.appointment import Appointment
from models.laboratory import LaboratoryOrder
from models.model_enums import AppointmentStatus, OrderStatus, PaymentStatus, ProductCategory, Role
from models.orders import Order
from services import orders, sales
from services.orders import CreateOrderRequest, ItemRequest
from services.sales import CreateSaleRequest, PaymentFactRequest
from tests.utils_db import actor_for, db, seed_appointment, seed_laboratory, seed_patient, seed_payment_method, seed_product, seed_staff  # noqa: F401

@pytest.fixture
def ctx(db):
    patient = seed_patient(db)
    specialist = seed_staff(db, Role.SPECIALIST)
    receptionist = actor_for(seed_staff(db, Role.RECEPTIONIST))
    frame = seed_product(db, price="100.00")
    order = orders.create_order(db, receptionist, CreateOrderRequest(
        patient_id=patient.id,
        items=[ItemRequest(product_id=frame.id)],
    ))
    return {
        "patient": patient,
        "receptionist": receptionist,
        "admin": actor_for(seed_staff(db, Role.ADMIN)),
        "method": seed_payment_method(db),
        "order": order,
        "appointment": seed_appointment(db, patient, specialist, status=AppointmentStatus.COMPLETED),
    }

def pay(ctx, amount) -> PaymentFactRequest:
    return PaymentFactRequest(amount=Decimal(amount), payment_method_id=ctx["method"].id)

def sale_for(db, ctx, payments=(), **kwargs):
    return sales.create_sale(db, ctx["receptionist"], CreateSaleRequest(
        patient_id=ctx["patient"].id,
        order_id=ctx["order"].id,
        appointment_id=ctx["appointment"].id,
        subtotal=Decimal("100.00"),
        total=Decimal("100.00"),
        payments=[pay(ctx, amount) for amount in payments],
        **kwargs,
    ))

def fresh(db, model, id):
    db.expire_all()
    return db.query(model).filter(model.id == id).first()

def test_order_mirrors_sale_payment_status(db, ctx):
    sale = sale_for(db, ctx)
    assert fresh(db, Order, ctx["order"].id).payment_status == PaymentStatus.PENDING

    sales.add_payment(db, sale.id, ctx["receptionist"], pay(ctx, "25.00"))
    assert fresh(db, Order, ctx["order"].id).payment_status == PaymentStatus.PARTIAL

    partial = sales.add_partial_payment(db, sale.id, ctx["receptionist"], pay(ctx, "75.00"))
    assert fresh(db, Order, ctx["order"].id).payment_status == PaymentStatus.PAID

    sales.remove_partial_payment(db, sale.id, partial.id, ctx["admin"])
    assert fresh(db, Order, ctx["order"].id).payment_status == PaymentStatus.PARTIAL

def test_unpaid_sale_keeps_appointment_link(db, ctx):
    sale = sale_for(db, ctx, payments=["10.00"])
    appointment = fresh(db, Appointment, ctx["appointment"].id)
    assert appointment.sale_id == sale.id
    assert appointment.is_billed is False
    assert appointment.billed_at is None

def test_billed_at_is_kept_across_repeated_propagation(db, ctx):
    sale = sale_for(db, ctx, payments=["100.00"])
    billed_at = fresh(db, Appointment, ctx["appointment"].id).billed_at
    assert billed_at is not None

    sales.resync_sale(db, sale.id, ctx["admin"])
    appointment = fresh(db, Appointment, ctx["appointment"].id)
    assert appointment.is_billed is True
    assert appointment.billed_at == billed_at

def test_resync_repairs_drifted_fields(db, ctx):
    sale = sale_for(db, ctx, payments=["100.00"])
    order = fresh(db, Order, ctx["order"].id)
    order.payment_status = PaymentStatus.PENDING
    appointment = fresh(db, Appointment, ctx["appointment"].id)
    appointment.is_billed = False
    sale.balance = Decimal("55.00")
    db.commit()

    sales.resync_sale(db, sale.id, ctx["admin"])
    assert fresh(db, Order, ctx["order"].id).payment_status == PaymentStatus.PAID
    assert fresh(db, Appointment, ctx["appointment"].id).is_billed is True
    assert sales.get_sale_or_404(db, sale.id).balance == Decimal("0.00")

def test_cancel_cancels_order_and_releases_appointment(db, ctx):
    sale = sale_for(db, ctx, payments=["100.00"])
    sales.cancel_sale(db, sale.id, ctx["receptionist"])

    order = fresh(db, Order, ctx["order"].id)
    assert order.status == OrderStatus.CANCELLED
    # Payment status keeps the last value the sale had
    assert order.payment_status == PaymentStatus.PAID

    appointment = fresh(db, Appointment, ctx["appointment"].id)
    assert appointment.sale_id is None
    assert appointment.is_billed is False
    assert appointment.billed_at is None

def test_delete_resets_order_and_detaches_lab_order(db, ctx):
    seed_laboratory(db)
    sale = sale_for(db, ctx, payments=["100.00"], contains_lenses=True)
    lab_order = db.query(LaboratoryOrder).filter(LaboratoryOrder.sale_id == sale.id).first()
    assert lab_order is not None
    lab_order_id = lab_order.id

    sales.delete_sale(db, sale.id, ctx["admin"])

    order = fresh(db, Order, ctx["order"].id)
    assert order.payment_status == PaymentStatus.PENDING
    assert order.status == OrderStatus.PENDING

    appointment = fresh(db, Appointment, ctx["appointment"].id)
    assert appointment.sale_id is None
    assert appointment.is_billed is False

    lab_order = fresh(db, LaboratoryOrder, lab_order_id)
    assert lab_order is not None
    assert lab_order.sale_id is None

def test_lens_order_opens_laboratory_order(db, ctx):
    laboratory = seed_laboratory(db)
    lens = seed_product(db, price="300.00", category=ProductCategory.LENS)
    order = orders.create_order(db, ctx["receptionist"], CreateOrderRequest(
        patient_id=ctx["patient"].id,
        laboratory_id=laboratory.id,
        items=[ItemRequest(product_id=lens.id)],
    ))
    sale = sales.create_sale(db, ctx["receptionist"], CreateSaleRequest(
        patient_id=ctx["patient"].id,
        order_id=order.id,
        subtotal=order.subtotal,
        tax=order.tax,
        total=order.total,
    ))
    lab_order = db.query(LaboratoryOrder).filter(LaboratoryOrder.sale_id == sale.id).one()
    assert lab_order.laboratory_id == laboratory.id
    assert lab_order.order_id == order.id
    assert lab_order.created_by == ctx["receptionist"].id
    assert sale.sale_number in lab_order.notes
