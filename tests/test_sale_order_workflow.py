# tests/test_sale_order_workflow.py - Tests des commandes de vente autonomes

import pytest

from core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from db.models import SaleOrder
from services.order_workflow import SaleOrderWorkflow


@pytest.fixture
def sale_workflow(db):
    return SaleOrderWorkflow(db)


@pytest.fixture
def sale_order(sale_workflow, customer_actor, laptop, make_sale_item):
    return sale_workflow.create_standalone(
        customer_actor, [make_sale_item(laptop, quantity=2)], shipping_amount=50.0
    )


def advance(workflow, actor, sale_order_id, *statuses):
    sale_order = None
    for status in statuses:
        sale_order = workflow.update_status(actor, sale_order_id, status)
    return sale_order


class TestCreate:

    def test_customer_order_deducts_stock(self, db, sale_order, customer, vendor, laptop):
        assert sale_order.order_number == "SO000001"
        assert sale_order.status == "draft"
        assert sale_order.customer_id == customer.id
        assert sale_order.vendor_id == vendor.id
        assert sale_order.subtotal == pytest.approx(2000.0)
        assert sale_order.tax_amount == pytest.approx(360.0)
        assert sale_order.shipping_amount == 50.0
        assert sale_order.total_amount == pytest.approx(2410.0)
        assert sale_order.items[0].duration_value == 1

        db.refresh(laptop)
        assert laptop.quantity_on_hand == 3

    def test_discount(self, sale_workflow, customer_actor, laptop, make_sale_item):
        sale_order = sale_workflow.create_standalone(
            customer_actor, [make_sale_item(laptop, quantity=2)], discount_amount=100.0
        )
        assert sale_order.discount_amount == 100.0
        assert sale_order.tax_amount == pytest.approx(342.0)
        assert sale_order.total_amount == pytest.approx(2242.0)

    def test_vendor_orders_for_customer(self, sale_workflow, vendor_actor, customer, laptop, make_sale_item):
        sale_order = sale_workflow.create_standalone(
            vendor_actor, [make_sale_item(laptop)], customer_id=customer.id
        )
        assert sale_order.customer_id == customer.id

    def test_vendor_must_name_customer(self, sale_workflow, vendor_actor, laptop, make_sale_item):
        with pytest.raises(ValidationError):
            sale_workflow.create_standalone(vendor_actor, [make_sale_item(laptop)])

    def test_unknown_customer(self, sale_workflow, vendor_actor, laptop, make_sale_item):
        with pytest.raises(NotFoundError):
            sale_workflow.create_standalone(vendor_actor, [make_sale_item(laptop)], customer_id="missing")

    def test_customer_cannot_order_for_someone_else(self, sale_workflow, customer_actor, other_customer,
                                                    laptop, make_sale_item):
        with pytest.raises(AuthorizationError):
            sale_workflow.create_standalone(
                customer_actor, [make_sale_item(laptop)], customer_id=other_customer.id
            )

    def test_vendor_sells_only_own_products(self, sale_workflow, vendor_actor, customer, speaker, make_sale_item):
        with pytest.raises(AuthorizationError):
            sale_workflow.create_standalone(vendor_actor, [make_sale_item(speaker)], customer_id=customer.id)

    def test_not_sellable(self, sale_workflow, customer_actor, sofa, make_sale_item):
        with pytest.raises(ValidationError):
            sale_workflow.create_standalone(customer_actor, [make_sale_item(sofa)])

    def test_single_vendor_per_order(self, sale_workflow, customer_actor, laptop, speaker, make_sale_item):
        with pytest.raises(ValidationError):
            sale_workflow.create_standalone(customer_actor, [make_sale_item(laptop), make_sale_item(speaker)])

    def test_insufficient_stock_leaves_stock_untouched(self, db, sale_workflow, customer_actor,
                                                       laptop, make_sale_item):
        with pytest.raises(UnavailableError):
            sale_workflow.create_standalone(customer_actor, [make_sale_item(laptop, quantity=6)])
        db.refresh(laptop)
        assert laptop.quantity_on_hand == 5
        assert db.query(SaleOrder).count() == 0

    def test_empty_items(self, sale_workflow, customer_actor):
        with pytest.raises(ValidationError):
            sale_workflow.create_standalone(customer_actor, [])

    def test_negative_shipping(self, sale_workflow, customer_actor, laptop, make_sale_item):
        with pytest.raises(ValidationError):
            sale_workflow.create_standalone(customer_actor, [make_sale_item(laptop)], shipping_amount=-5)


class TestStatus:

    def test_fulfilment_sets_timestamps(self, sale_workflow, vendor_actor, sale_order):
        confirmed = advance(sale_workflow, vendor_actor, sale_order.id, "confirmed")
        assert confirmed.confirmed_at is not None

        delivered = advance(sale_workflow, vendor_actor, sale_order.id, "processing", "shipped", "delivered")
        assert delivered.shipped_at is not None
        assert delivered.delivered_at is not None
        assert {item.status for item in delivered.items} == {"delivered"}

    def test_illegal_jump(self, sale_workflow, vendor_actor, sale_order):
        with pytest.raises(ConflictError):
            sale_workflow.update_status(vendor_actor, sale_order.id, "shipped")

    def test_unknown_status(self, sale_workflow, vendor_actor, sale_order):
        with pytest.raises(ValidationError):
            sale_workflow.update_status(vendor_actor, sale_order.id, "teleported")

    def test_customer_cannot_advance(self, sale_workflow, customer_actor, sale_order):
        with pytest.raises(AuthorizationError):
            sale_workflow.update_status(customer_actor, sale_order.id, "confirmed")


class TestCancel:

    def test_cancel_restores_stock(self, db, sale_workflow, customer_actor, sale_order, laptop):
        cancelled = sale_workflow.cancel(customer_actor, sale_order.id, "Changed my mind")
        assert cancelled.status == "cancelled"
        assert cancelled.rejection_reason == "Changed my mind"
        assert cancelled.cancelled_at is not None
        db.refresh(laptop)
        assert laptop.quantity_on_hand == 5

    def test_reason_required(self, sale_workflow, customer_actor, sale_order):
        with pytest.raises(ValidationError):
            sale_workflow.cancel(customer_actor, sale_order.id, "")

    def test_shipped_cannot_be_cancelled(self, sale_workflow, vendor_actor, sale_order):
        advance(sale_workflow, vendor_actor, sale_order.id, "confirmed", "processing", "shipped")
        with pytest.raises(ConflictError):
            sale_workflow.cancel(vendor_actor, sale_order.id, "Too late")

    def test_vendor_cancel_through_status(self, db, sale_workflow, vendor_actor, sale_order, laptop):
        cancelled = sale_workflow.update_status(vendor_actor, sale_order.id, "cancelled")
        assert cancelled.status == "cancelled"
        db.refresh(laptop)
        assert laptop.quantity_on_hand == 5

    def test_mirror_cannot_be_cancelled_directly(self, db, sale_workflow, customer_actor, vendor_actor,
                                                 rental_order):
        mirror = db.query(SaleOrder).filter(SaleOrder.linked_order_id == rental_order.id).one()
        with pytest.raises(ConflictError):
            sale_workflow.cancel(customer_actor, mirror.id, "Not needed")
        with pytest.raises(ConflictError):
            sale_workflow.update_status(vendor_actor, mirror.id, "cancelled")

    def test_mirror_cannot_be_refunded_directly(self, db, sale_workflow, vendor_actor, rental_order):
        mirror = db.query(SaleOrder).filter(SaleOrder.linked_order_id == rental_order.id).one()
        mirror.status = "delivered"
        mirror.payment_status = "paid"
        db.commit()

        with pytest.raises(ConflictError):
            sale_workflow.refund(vendor_actor, mirror.id, None, "Returned")
        with pytest.raises(ConflictError):
            sale_workflow.update_status(vendor_actor, mirror.id, "refunded")
        db.refresh(mirror)
        assert mirror.payment_status == "paid"


class TestRefundAndPayment:

    def _delivered(self, sale_workflow, vendor_actor, sale_order):
        return advance(sale_workflow, vendor_actor, sale_order.id, "confirmed", "processing", "shipped", "delivered")

    def test_refund_paid_delivered_order(self, sale_workflow, vendor_actor, sale_order):
        self._delivered(sale_workflow, vendor_actor, sale_order)
        sale_workflow.update_payment_status(vendor_actor, sale_order.id, "paid")

        refunded = sale_workflow.refund(vendor_actor, sale_order.id, 500.0, "Damaged box")
        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"
        assert refunded.refund_amount == 500.0
        assert refunded.refund_reason == "Damaged box"

    def test_full_refund_by_default(self, sale_workflow, vendor_actor, sale_order):
        self._delivered(sale_workflow, vendor_actor, sale_order)
        sale_workflow.update_payment_status(vendor_actor, sale_order.id, "paid")
        refunded = sale_workflow.refund(vendor_actor, sale_order.id, None, "Returned")
        assert refunded.refund_amount == pytest.approx(2410.0)

    def test_unpaid_order_cannot_be_refunded(self, sale_workflow, vendor_actor, sale_order):
        self._delivered(sale_workflow, vendor_actor, sale_order)
        with pytest.raises(ConflictError):
            sale_workflow.refund(vendor_actor, sale_order.id, 100.0, "Returned")

    def test_refund_above_total(self, sale_workflow, vendor_actor, sale_order):
        self._delivered(sale_workflow, vendor_actor, sale_order)
        sale_workflow.update_payment_status(vendor_actor, sale_order.id, "paid")
        with pytest.raises(ValidationError):
            sale_workflow.refund(vendor_actor, sale_order.id, 5000.0, "Returned")

    def test_refund_reason_required(self, sale_workflow, vendor_actor, sale_order):
        with pytest.raises(ValidationError):
            sale_workflow.refund(vendor_actor, sale_order.id, 10.0, None)

    def test_customer_cannot_refund(self, sale_workflow, customer_actor, sale_order):
        with pytest.raises(AuthorizationError):
            sale_workflow.refund(customer_actor, sale_order.id, 10.0, "Please")

    def test_invalid_payment_status(self, sale_workflow, vendor_actor, sale_order):
        with pytest.raises(ValidationError):
            sale_workflow.update_payment_status(vendor_actor, sale_order.id, "refunded")

    def test_payment_on_cancelled_order(self, sale_workflow, vendor_actor, customer_actor, sale_order):
        sale_workflow.cancel(customer_actor, sale_order.id, "Oops")
        with pytest.raises(ConflictError):
            sale_workflow.update_payment_status(vendor_actor, sale_order.id, "paid")


class TestDeleteAndList:

    def test_delete_draft_restores_stock(self, db, sale_workflow, customer_actor, sale_order, laptop):
        sale_workflow.delete(customer_actor, sale_order.id)
        assert db.query(SaleOrder).count() == 0
        db.refresh(laptop)
        assert laptop.quantity_on_hand == 5

    def test_delete_confirmed_rejected(self, sale_workflow, vendor_actor, sale_order):
        advance(sale_workflow, vendor_actor, sale_order.id, "confirmed")
        with pytest.raises(ConflictError):
            sale_workflow.delete(vendor_actor, sale_order.id)

    def test_list_scoped(self, sale_workflow, customer_actor, other_customer_actor, vendor_actor,
                         other_vendor_actor, sale_order):
        assert [s.id for s in sale_workflow.list(customer_actor)] == [sale_order.id]
        assert sale_workflow.list(other_customer_actor) == []
        assert len(sale_workflow.list(vendor_actor, status="draft")) == 1
        assert sale_workflow.list(other_vendor_actor) == []

    def test_get_unknown(self, sale_workflow, customer_actor):
        with pytest.raises(NotFoundError):
            sale_workflow.get(customer_actor, "missing")
