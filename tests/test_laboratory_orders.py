from decimal import Decimal
from unittest.mock import patch
import pytest
from sqlalchemy.exc import IntegrityError
from models.laboratory import LaboratoryOrder
from models.model_enums import LaboratoryOrderPriority, LaboratoryOrderStatus, LaboratoryStatus, ProductCategory, Role
from models.payments import Sale
from repository.laboratory import get_lab_order_for_sale
from repository.numbering import next_document_number
from services import laboratory, orders, sales
from services.laboratory import CreateLabOrderRequest, LabOrderFilters, LabTrigger, SaleItemHint, UpdateLabOrderRequest, UpdateLabStatusRequest
from services.orders import CreateOrderRequest, ItemRequest
from services.sales import CreateSaleRequest
from utils import local_datetime
from utils.errors import NotFoundError, StateError
from utils.pagination import PaginationInput
from tests.utils_db import actor_for, db, seed_laboratory, seed_patient, seed_product, seed_staff  # noqa: F401

@pytest.fixture
def ctx(db):
    return {
        "patient": seed_patient(db),
        "receptionist": actor_for(seed_staff(db, Role.RECEPTIONIST)),
        "admin": actor_for(seed_staff(db, Role.ADMIN)),
    }

def new_sale(db, ctx, order_id=None, **trigger):
    return sales.create_sale(db, ctx["receptionist"], CreateSaleRequest(
        patient_id=ctx["patient"].id,
        order_id=order_id,
        subtotal=Decimal("100.00"),
        total=Decimal("100.00"),
        **trigger,
    ))

def new_order(db, ctx, category, laboratory_id=None):
    product = seed_product(db, category=category)
    return orders.create_order(db, ctx["receptionist"], CreateOrderRequest(
        patient_id=ctx["patient"].id,
        laboratory_id=laboratory_id,
        items=[ItemRequest(product_id=product.id)],
    ))

def lab_orders_for(db, sale_id):
    return db.query(LaboratoryOrder).filter(LaboratoryOrder.sale_id == sale_id).all()

class TestTrigger:
    def test_plain_sale_needs_nothing(self, db, ctx):
        seed_laboratory(db)
        sale = new_sale(db, ctx)
        assert not laboratory.needs_lab_order(db, sale, LabTrigger())
        assert lab_orders_for(db, sale.id) == []

    @pytest.mark.parametrize("trigger", [
        LabTrigger(contains_lenses=True),
        LabTrigger(lens_items=True),
        LabTrigger(items=[SaleItemHint(product_id=1), SaleItemHint(lens_id=7)]),
    ])
    def test_payload_flags(self, db, ctx, trigger):
        seed_laboratory(db)
        sale = new_sale(db, ctx, **trigger.model_dump())
        assert len(lab_orders_for(db, sale.id)) == 1

    def test_explicit_laboratory(self, db, ctx):
        seed_laboratory(db, "First")
        chosen = seed_laboratory(db, "Chosen")
        sale = new_sale(db, ctx, laboratory_id=chosen.id, laboratory_notes="Blue filter")
        [lab_order] = lab_orders_for(db, sale.id)
        assert lab_order.laboratory_id == chosen.id
        assert lab_order.notes == "Blue filter"
        assert lab_order.status == LaboratoryOrderStatus.PENDING

    def test_order_with_lens_item(self, db, ctx):
        seed_laboratory(db)
        lens_order = new_order(db, ctx, ProductCategory.LENS)
        frame_order = new_order(db, ctx, ProductCategory.FRAME)
        assert len(lab_orders_for(db, new_sale(db, ctx, order_id=lens_order.id).id)) == 1
        assert lab_orders_for(db, new_sale(db, ctx, order_id=frame_order.id).id) == []

class TestOpenForSale:
    def test_is_idempotent(self, db, ctx):
        seed_laboratory(db)
        sale = new_sale(db, ctx, contains_lenses=True)
        first = lab_orders_for(db, sale.id)[0]

        again = laboratory.create_from_sale(db, sale.id, ctx["receptionist"])
        assert again.id == first.id
        assert len(lab_orders_for(db, sale.id)) == 1

    def test_prefers_order_laboratory(self, db, ctx):
        seed_laboratory(db, "Default")
        preferred = seed_laboratory(db, "Preferred")
        order = new_order(db, ctx, ProductCategory.LENS, laboratory_id=preferred.id)
        sale = new_sale(db, ctx, order_id=order.id)
        assert lab_orders_for(db, sale.id)[0].laboratory_id == preferred.id

    def test_falls_back_to_active_laboratory(self, db, ctx):
        seed_laboratory(db, "Closed", LaboratoryStatus.INACTIVE)
        active = seed_laboratory(db, "Open")
        sale = new_sale(db, ctx, contains_lenses=True)
        assert lab_orders_for(db, sale.id)[0].laboratory_id == active.id

    def test_falls_back_to_any_laboratory(self, db, ctx):
        inactive = seed_laboratory(db, "Closed", LaboratoryStatus.INACTIVE)
        sale = new_sale(db, ctx, contains_lenses=True)
        assert lab_orders_for(db, sale.id)[0].laboratory_id == inactive.id

    def test_without_laboratories_the_sale_still_succeeds(self, db, ctx):
        sale = new_sale(db, ctx, contains_lenses=True)
        assert sale.id is not None
        assert lab_orders_for(db, sale.id) == []
        assert laboratory.create_from_sale(db, sale.id, ctx["receptionist"]) is None

    def test_unknown_sale_or_laboratory(self, db, ctx):
        with pytest.raises(NotFoundError):
            laboratory.create_from_sale(db, 999, ctx["receptionist"])
        sale = new_sale(db, ctx)
        with pytest.raises(NotFoundError):
            laboratory.create_from_sale(db, sale.id, ctx["receptionist"], laboratory_id=999)

    def test_unknown_laboratory_rejects_the_sale(self, db, ctx):
        seed_laboratory(db)
        with pytest.raises(NotFoundError):
            new_sale(db, ctx, laboratory_id=999)
        assert db.query(Sale).count() == 0
        assert db.query(LaboratoryOrder).count() == 0

    def test_concurrent_open_returns_the_existing_order(self, db, ctx):
        seed_laboratory(db)
        sale = new_sale(db, ctx, contains_lenses=True)
        [first] = lab_orders_for(db, sale.id)

        # The first lookup misses the order another writer has just committed
        misses = [None]
        def lookup(session, sale_id):
            return misses.pop() if misses else get_lab_order_for_sale(session, sale_id)

        with patch("services.laboratory.get_lab_order_for_sale", side_effect=lookup):
            again = laboratory.create_from_sale(db, sale.id, ctx["receptionist"])
        assert again.id == first.id
        assert len(lab_orders_for(db, sale.id)) == 1

    def test_history_starts_with_creation(self, db, ctx):
        seed_laboratory(db)
        sale = new_sale(db, ctx, contains_lenses=True)
        lab_order = lab_orders_for(db, sale.id)[0]
        assert lab_order.order_number.startswith("LAB-")
        assert [entry.status for entry in lab_order.status_history] == [LaboratoryOrderStatus.PENDING]

class TestManagement:
    @pytest.fixture
    def lab_order(self, db, ctx):
        lab = seed_laboratory(db)
        return laboratory.create_lab_order(db, ctx["receptionist"], CreateLabOrderRequest(
            laboratory_id=lab.id,
            patient_id=ctx["patient"].id,
        ))

    def test_manual_creation_for_sale_is_idempotent(self, db, ctx, lab_order):
        sale = new_sale(db, ctx)
        req = CreateLabOrderRequest(laboratory_id=lab_order.laboratory_id, patient_id=ctx["patient"].id, sale_id=sale.id)
        first = laboratory.create_lab_order(db, ctx["receptionist"], req)
        second = laboratory.create_lab_order(db, ctx["receptionist"], req)
        assert first.id == second.id

    def test_status_changes_are_recorded(self, db, ctx, lab_order):
        laboratory.update_status(db, lab_order.id, ctx["receptionist"], UpdateLabStatusRequest(status=LaboratoryOrderStatus.SENT_TO_LAB))
        # Any transition is accepted, including going backwards
        updated = laboratory.update_status(db, lab_order.id, ctx["admin"], UpdateLabStatusRequest(status=LaboratoryOrderStatus.PENDING, notes="Wrong prescription"))

        assert updated.status == LaboratoryOrderStatus.PENDING
        history = updated.status_history
        assert [entry.status for entry in history] == [
            LaboratoryOrderStatus.PENDING,
            LaboratoryOrderStatus.SENT_TO_LAB,
            LaboratoryOrderStatus.PENDING,
        ]
        assert history[-1].notes == "Wrong prescription"
        assert history[-1].user_id == ctx["admin"].id

    def test_descriptive_fields_can_be_edited(self, db, ctx, lab_order):
        today = local_datetime.today()
        updated = laboratory.update_lab_order(db, lab_order.id, ctx["receptionist"], UpdateLabOrderRequest(
            priority=LaboratoryOrderPriority.URGENT,
            completion_date=today,
        ))
        assert updated.priority == LaboratoryOrderPriority.URGENT
        assert updated.completion_date == today
        assert updated.status == LaboratoryOrderStatus.PENDING
        assert len(updated.status_history) == 1

        updated = laboratory.update_lab_order(db, lab_order.id, ctx["receptionist"], UpdateLabOrderRequest(notes="Anti-glare coating"))
        assert updated.notes == "Anti-glare coating"
        assert updated.priority == LaboratoryOrderPriority.URGENT

        with pytest.raises(NotFoundError):
            laboratory.update_lab_order(db, 999, ctx["receptionist"], UpdateLabOrderRequest(notes="Missing"))

    def test_other_integrity_errors_are_not_retried(self, db, ctx, lab_order):
        sale = new_sale(db, ctx)
        req = CreateLabOrderRequest(laboratory_id=lab_order.laboratory_id, patient_id=ctx["patient"].id, sale_id=sale.id)
        laboratory.create_lab_order(db, ctx["receptionist"], req)

        # A second order for the same sale breaks the sale_id constraint, not the number one
        with patch("services.laboratory.get_lab_order_for_sale", return_value=None), \
                patch("services.laboratory.next_document_number", wraps=next_document_number) as numbering:
            with pytest.raises(IntegrityError):
                laboratory.create_lab_order(db, ctx["receptionist"], req)
        assert numbering.call_count == 1
        assert len(lab_orders_for(db, sale.id)) == 1

    def test_only_pending_orders_can_be_deleted(self, db, ctx, lab_order):
        laboratory.update_status(db, lab_order.id, ctx["receptionist"], UpdateLabStatusRequest(status=LaboratoryOrderStatus.IN_PROCESS))
        with pytest.raises(StateError):
            laboratory.delete_lab_order(db, lab_order.id, ctx["admin"])

        laboratory.update_status(db, lab_order.id, ctx["receptionist"], UpdateLabStatusRequest(status=LaboratoryOrderStatus.PENDING))
        laboratory.delete_lab_order(db, lab_order.id, ctx["admin"])
        with pytest.raises(NotFoundError):
            laboratory.get_lab_order_or_404(db, lab_order.id)

    def test_list_and_stats(self, db, ctx, lab_order):
        second = laboratory.create_lab_order(db, ctx["receptionist"], CreateLabOrderRequest(
            laboratory_id=lab_order.laboratory_id,
            patient_id=ctx["patient"].id,
            status=LaboratoryOrderStatus.DELIVERED,
        ))

        page = laboratory.list_lab_orders(db, LabOrderFilters(status=LaboratoryOrderStatus.DELIVERED), PaginationInput())
        assert [item.id for item in page.data] == [second.id]

        stats = laboratory.lab_order_stats(db)
        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["delivered"] == 1
        assert stats["cancelled"] == 0
