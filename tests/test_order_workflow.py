# tests/test_order_workflow.py - Tests des commandes de location et de leur miroir de vente

import pytest

from core.errors import AuthorizationError, ConflictError, UnavailableError, ValidationError
from db.models import Order, Pickup, Quotation, Reservation, SaleOrder
from services.inventory_ledger import InventoryReservationLedger
from services.order_workflow import RentalOrderWorkflow


@pytest.fixture
def order_workflow(db):
    return RentalOrderWorkflow(db)


def mirror_of(db, order):
    return db.query(SaleOrder).filter(SaleOrder.linked_order_id == order.id).first()


def advance(workflow, actor, order_id, *statuses):
    order = None
    for status in statuses:
        order = workflow.update_status(actor, order_id, status)
    return order


class TestConversion:

    def test_converted_order_and_mirror(self, db, rental_order, approved_quotation, laptop):
        assert rental_order.status == "confirmed"
        assert rental_order.payment_status == "pending"
        assert rental_order.quotation_id == approved_quotation.id
        assert rental_order.total_amount == pytest.approx(708.0)
        assert rental_order.mirror_status == "created"

        mirror = mirror_of(db, rental_order)
        assert mirror is not None
        assert mirror.status == "confirmed"
        assert mirror.order_number == "SO000001"
        assert mirror.total_amount == pytest.approx(708.0)
        assert mirror.items[0].delivery_date == rental_order.items[0].rental_start_date

    def test_mirror_does_not_touch_stock(self, db, rental_order, laptop):
        db.refresh(laptop)
        assert laptop.quantity_on_hand == 5

    def test_reservations_written(self, db, rental_order, laptop, rental_window):
        reservations = db.query(Reservation).filter(Reservation.order_id == rental_order.id).all()
        assert [r.quantity for r in reservations] == [2]
        start, end = rental_window
        assert InventoryReservationLedger(db).available_quantity(laptop, start, end) == 3

    def test_items_copied_from_quotation(self, rental_order):
        item = rental_order.items[0]
        assert item.quantity == 2
        assert item.duration_unit == "day"
        assert item.price_per_unit == 100.0
        assert item.status == "pending"

    def test_conversion_options(self, quotation_workflow, customer_actor, approved_quotation):
        order = quotation_workflow.convert_to_order(
            customer_actor, approved_quotation.id,
            shipping_address={"city": "Lyon"}, security_deposit=150.0, notes="Ring twice",
        )
        assert order.shipping_address == {"city": "Lyon"}
        assert order.security_deposit == 150.0
        assert order.notes == "Ring twice"

    def test_unavailable_at_conversion_writes_nothing(self, db, quotation_workflow, customer_actor,
                                                      other_customer_actor, vendor_actor, laptop, make_item):
        first = quotation_workflow.create(customer_actor, [make_item(laptop, quantity=3)])
        second = quotation_workflow.create(other_customer_actor, [make_item(laptop, quantity=3)])
        for quotation, actor in ((first, customer_actor), (second, other_customer_actor)):
            quotation_workflow.submit(actor, quotation.id)
            quotation_workflow.approve(vendor_actor, quotation.id)

        quotation_workflow.convert_to_order(customer_actor, first.id)
        with pytest.raises(UnavailableError):
            quotation_workflow.convert_to_order(other_customer_actor, second.id)

        db.expire_all()
        assert db.get(Quotation, second.id).status == "approved"
        assert db.get(Quotation, second.id).converted_to_order is None
        assert db.query(Order).count() == 1
        assert db.query(SaleOrder).count() == 1

    def test_mirror_failure_is_recorded_then_reconciled(self, db, monkeypatch, quotation_workflow,
                                                        customer_actor, admin_actor, approved_quotation):
        def broken(self, order):
            raise RuntimeError("sales service down")

        monkeypatch.setattr(RentalOrderWorkflow, "_build_sales_mirror", broken)
        order = quotation_workflow.convert_to_order(customer_actor, approved_quotation.id)

        assert order.status == "confirmed"
        assert order.mirror_status == "failed"
        assert "sales service down" in order.mirror_error
        assert mirror_of(db, order) is None
        assert db.query(Reservation).filter(Reservation.order_id == order.id).count() == 1

        monkeypatch.undo()
        report = RentalOrderWorkflow(db).reconcile_sales_mirrors(admin_actor)

        assert report == {"checked": 1, "created": 1, "failed": 0}
        db.expire_all()
        assert db.get(Order, order.id).mirror_status == "created"
        assert mirror_of(db, order) is not None

    def test_reconcile_after_cancel_builds_cancelled_mirror(self, db, monkeypatch, quotation_workflow,
                                                            customer_actor, admin_actor, approved_quotation):
        def broken(self, order):
            raise RuntimeError("sales service down")

        monkeypatch.setattr(RentalOrderWorkflow, "_build_sales_mirror", broken)
        order = quotation_workflow.convert_to_order(customer_actor, approved_quotation.id)
        monkeypatch.undo()
        RentalOrderWorkflow(db).cancel(customer_actor, order.id)

        report = RentalOrderWorkflow(db).reconcile_sales_mirrors(admin_actor)

        assert report == {"checked": 1, "created": 1, "failed": 0}
        db.expire_all()
        cancelled = db.get(Order, order.id)
        assert cancelled.status == "cancelled"
        assert cancelled.mirror_status == "created"
        mirror = mirror_of(db, cancelled)
        assert mirror.status == "cancelled"
        assert mirror.cancelled_at == cancelled.cancelled_at

    def test_reconcile_is_admin_only(self, order_workflow, vendor_actor):
        with pytest.raises(AuthorizationError):
            order_workflow.reconcile_sales_mirrors(vendor_actor)

    def test_reconcile_with_nothing_to_do(self, order_workflow, admin_actor, rental_order):
        assert order_workflow.reconcile_sales_mirrors(admin_actor) == {"checked": 0, "created": 0, "failed": 0}


class TestStatusTransitions:

    def test_full_fulfilment_path(self, db, order_workflow, vendor_actor, rental_order):
        order = advance(order_workflow, vendor_actor, rental_order.id, "processing", "picked_up")
        assert order.status == "picked_up"
        assert order.pickup_date is not None
        assert {item.status for item in order.items} == {"with_customer"}

        pickup = db.query(Pickup).filter(Pickup.order_id == order.id).one()
        assert pickup.items == [{"product_id": order.items[0].product_id, "quantity": 2, "condition": "good"}]

        order = advance(order_workflow, vendor_actor, rental_order.id, "active", "completed")
        assert order.status == "completed"
        assert {item.status for item in order.items} == {"returned"}

    def test_pickup_failure_does_not_block_transition(self, db, monkeypatch, order_workflow,
                                                      vendor_actor, rental_order):
        def broken(**fields):
            raise RuntimeError("pickup store unavailable")

        monkeypatch.setattr("services.order_workflow.Pickup", broken)
        order = advance(order_workflow, vendor_actor, rental_order.id, "processing", "picked_up")

        assert order.status == "picked_up"
        assert db.query(Pickup).count() == 0

    @pytest.mark.parametrize("target", ["active", "completed", "picked_up"])
    def test_skipping_stages_rejected(self, order_workflow, vendor_actor, rental_order, target):
        with pytest.raises(ConflictError):
            order_workflow.update_status(vendor_actor, rental_order.id, target)

    def test_no_regression(self, order_workflow, vendor_actor, rental_order):
        advance(order_workflow, vendor_actor, rental_order.id, "processing")
        with pytest.raises(ConflictError):
            order_workflow.update_status(vendor_actor, rental_order.id, "confirmed")

    def test_unknown_status(self, order_workflow, vendor_actor, rental_order):
        with pytest.raises(ValidationError):
            order_workflow.update_status(vendor_actor, rental_order.id, "lost")

    def test_customer_cannot_advance(self, order_workflow, customer_actor, rental_order):
        with pytest.raises(AuthorizationError):
            order_workflow.update_status(customer_actor, rental_order.id, "processing")

    def test_other_vendor_cannot_advance(self, order_workflow, other_vendor_actor, rental_order):
        with pytest.raises(AuthorizationError):
            order_workflow.update_status(other_vendor_actor, rental_order.id, "processing")


class TestCancel:

    def test_active_order_cannot_be_cancelled(self, order_workflow, vendor_actor, customer_actor, rental_order):
        advance(order_workflow, vendor_actor, rental_order.id, "processing", "picked_up", "active")
        with pytest.raises(ConflictError):
            order_workflow.cancel(customer_actor, rental_order.id)

    def test_confirmed_order_cancel_releases_reservations(self, db, order_workflow, customer_actor,
                                                          rental_order, laptop, rental_window):
        start, end = rental_window
        ledger = InventoryReservationLedger(db)
        assert ledger.check_availability(laptop, 5, start, end) is False

        order = order_workflow.cancel(customer_actor, rental_order.id)

        assert order.status == "cancelled"
        assert order.cancelled_at is not None
        assert db.query(Reservation).filter(Reservation.order_id == order.id).count() == 0
        assert ledger.check_availability(laptop, 5, start, end) is True

        mirror = mirror_of(db, order)
        assert mirror.status == "cancelled"

    def test_vendor_cancels_through_status_update(self, db, order_workflow, vendor_actor, rental_order):
        order = order_workflow.update_status(vendor_actor, rental_order.id, "cancelled")
        assert order.status == "cancelled"
        assert db.query(Reservation).count() == 0

    def test_vendor_cannot_use_customer_cancel(self, order_workflow, vendor_actor, rental_order):
        with pytest.raises(AuthorizationError):
            order_workflow.cancel(vendor_actor, rental_order.id)

    def test_cancel_twice(self, order_workflow, customer_actor, rental_order):
        order_workflow.cancel(customer_actor, rental_order.id)
        with pytest.raises(ConflictError):
            order_workflow.cancel(customer_actor, rental_order.id)

    def test_completed_order_cannot_be_cancelled(self, order_workflow, vendor_actor, admin_actor, rental_order):
        advance(order_workflow, vendor_actor, rental_order.id, "processing", "picked_up", "active", "completed")
        with pytest.raises(ConflictError):
            order_workflow.cancel(admin_actor, rental_order.id)


class TestPaymentAndReads:

    def test_payment_status_synced_to_mirror(self, db, order_workflow, vendor_actor, rental_order):
        order = order_workflow.update_payment_status(vendor_actor, rental_order.id, "partial")
        assert order.payment_status == "partial"
        assert mirror_of(db, order).payment_status == "partial"

    def test_invalid_payment_status(self, order_workflow, vendor_actor, rental_order):
        with pytest.raises(ValidationError):
            order_workflow.update_payment_status(vendor_actor, rental_order.id, "refunded")

    def test_list_and_stats_scoped(self, order_workflow, customer_actor, other_customer_actor,
                                   vendor_actor, admin_actor, rental_order):
        assert [o.id for o in order_workflow.list(customer_actor)] == [rental_order.id]
        assert order_workflow.list(other_customer_actor) == []
        assert len(order_workflow.list(vendor_actor, status="confirmed")) == 1
        assert order_workflow.list(admin_actor, status="completed") == []

        stats = order_workflow.stats(vendor_actor)
        assert stats["total"] == 1
        assert stats["by_status"]["confirmed"] == 1
        assert stats["by_status"]["cancelled"] == 0
        assert order_workflow.stats(other_customer_actor)["total"] == 0

    def test_get_requires_relationship(self, order_workflow, other_customer_actor, rental_order):
        with pytest.raises(AuthorizationError):
            order_workflow.get(other_customer_actor, rental_order.id)
