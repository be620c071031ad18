from datetime import timedelta
from decimal import Decimal
import pytest
from models.discount import DiscountRequest
from models.model_enums import DiscountRequestStatus, OrderStatus, PaymentStatus, ProductCategory, QuoteStatus, Role
from services import orders
from services.orders import CreateOrderRequest, CreateQuoteRequest, ItemRequest
from utils import local_datetime
from utils.errors import NotFoundError, StateError, ValidationError
from tests.utils_db import actor_for, db, seed_patient, seed_product, seed_staff  # noqa: F401

@pytest.fixture
def ctx(db):
    admin = seed_staff(db, Role.ADMIN)
    frame = seed_product(db, price="200.00")
    db.add(DiscountRequest(
        user_id=admin.id,
        product_id=frame.id,
        status=DiscountRequestStatus.APPROVED,
        discount_percentage=Decimal("10"),
        original_price=frame.price,
        discounted_price=Decimal("180.00"),
    ))
    db.commit()
    return {
        "patient": seed_patient(db),
        "receptionist": actor_for(seed_staff(db, Role.RECEPTIONIST)),
        "frame": frame,
        "lens": seed_product(db, price="50.00", category=ProductCategory.LENS),
    }

def test_order_prices_through_discounts(db, ctx):
    order = orders.create_order(db, ctx["receptionist"], CreateOrderRequest(
        patient_id=ctx["patient"].id,
        items=[ItemRequest(product_id=ctx["frame"].id, quantity=2), ItemRequest(product_id=ctx["lens"].id)],
    ))

    frame_item, lens_item = order.items
    assert frame_item.price == Decimal("180.00")
    assert frame_item.discount_percentage == Decimal("10")
    assert frame_item.discount_id is not None
    assert frame_item.total == Decimal("360.00")
    assert lens_item.price == Decimal("50.00")
    assert lens_item.discount_id is None

    assert order.subtotal == Decimal("410.00")
    assert order.discount == Decimal("40.00")
    assert order.tax == Decimal("77.90")
    assert order.total == Decimal("487.90")
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.order_number.startswith("ORD-")

def test_order_items_report_lenses(db, ctx):
    order = orders.create_order(db, ctx["receptionist"], CreateOrderRequest(
        patient_id=ctx["patient"].id,
        items=[ItemRequest(product_id=ctx["frame"].id), ItemRequest(product_id=ctx["lens"].id)],
    ))
    assert [(item.product_id, item.is_lens) for item in orders.get_items(db, order.id)] == [
        (ctx["frame"].id, False),
        (ctx["lens"].id, True),
    ]

def test_unknown_product_or_patient(db, ctx):
    with pytest.raises(NotFoundError):
        orders.create_order(db, ctx["receptionist"], CreateOrderRequest(patient_id=ctx["patient"].id, items=[ItemRequest(product_id=999)]))
    with pytest.raises(NotFoundError):
        orders.create_order(db, ctx["receptionist"], CreateOrderRequest(patient_id=999, items=[ItemRequest(product_id=ctx["frame"].id)]))

def test_quote_conversion_copies_frozen_prices(db, ctx):
    quote = orders.create_quote(db, ctx["receptionist"], CreateQuoteRequest(
        patient_id=ctx["patient"].id,
        items=[ItemRequest(product_id=ctx["frame"].id)],
        expiration_date=local_datetime.today() + timedelta(days=15),
    ))
    assert quote.quote_number.startswith("QUOTE-")
    assert quote.items[0].original_price == Decimal("200.00")

    # Price changes after quoting do not affect the converted order
    ctx["frame"].price = Decimal("999.00")
    db.commit()

    order = orders.convert_quote(db, quote.id, ctx["receptionist"])
    assert order.total == quote.total
    assert order.items[0].price == Decimal("180.00")

    quote = orders.get_quote(db, quote.id)
    assert quote.status == QuoteStatus.CONVERTED
    assert quote.order_id == order.id

    with pytest.raises(StateError):
        orders.convert_quote(db, quote.id, ctx["receptionist"])

def test_expired_quote_cannot_be_converted(db, ctx):
    quote = orders.create_quote(db, ctx["receptionist"], CreateQuoteRequest(
        patient_id=ctx["patient"].id,
        items=[ItemRequest(product_id=ctx["lens"].id)],
    ))
    quote.expiration_date = local_datetime.today() - timedelta(days=1)
    db.commit()
    with pytest.raises(StateError):
        orders.convert_quote(db, quote.id, ctx["receptionist"])

def test_quote_expiration_in_the_past_is_rejected(db, ctx):
    with pytest.raises(ValidationError):
        orders.create_quote(db, ctx["receptionist"], CreateQuoteRequest(
            patient_id=ctx["patient"].id,
            items=[ItemRequest(product_id=ctx["lens"].id)],
            expiration_date=local_datetime.today() - timedelta(days=2),
        ))
