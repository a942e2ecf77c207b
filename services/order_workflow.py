"""
Workflows des commandes

Location :
    confirmed → processing → picked_up → active → completed
    confirmed / processing → cancelled

Vente :
    draft → confirmed → processing → shipped → delivered → refunded (si payée)
    draft / confirmed / processing → cancelled

Chaque commande de location porte une commande de vente miroir, créée dans
la même transaction (SAVEPOINT). Un échec de création du miroir est journalisé,
marqué sur la commande (mirror_status = failed) et rejoué par
reconcile_sales_mirrors().
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from core.logging import log_workflow_event
from core.policy import authorize
from core.security import Principal
from db.models import (
    Order,
    OrderItem,
    Pickup,
    Product,
    Quotation,
    SaleOrder,
    SaleOrderItem,
    new_id,
)
from models.user import User
from services.inventory_ledger import InventoryReservationLedger
from services.pricing_engine import get_pricing_engine
from services.sequence_service import next_number
from services.tax_policy import item_tax_rate

logger = logging.getLogger(__name__)

RENTAL_TRANSITIONS: Dict[str, frozenset] = {
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"picked_up", "cancelled"}),
    "picked_up": frozenset({"active"}),
    "active": frozenset({"completed"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

SALE_TRANSITIONS: Dict[str, frozenset] = {
    "draft": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset({"refunded"}),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}

SALE_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}

ORDER_PAYMENT_STATUSES = frozenset({"pending", "partial", "paid"})
SALE_PAYMENT_STATUSES = frozenset({"pending", "partial", "paid", "failed"})


def _line_fields(item: Any) -> Dict[str, Any]:
    """Copie des champs communs d'une ligne (devis, commande...)."""
    return {
        "position": item.position,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "rental_start_date": item.rental_start_date,
        "rental_end_date": item.rental_end_date,
        "duration_value": item.duration_value,
        "duration_unit": item.duration_unit,
        "price_per_unit": item.price_per_unit,
        "total_price": item.total_price,
        "tax_rate": item.tax_rate,
        "category": item.category,
    }


class RentalOrderWorkflow:
    """Commandes de location et leur projection de vente"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = InventoryReservationLedger(db)

    def _get(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _scoped_query(self, actor: Principal):
        query = self.db.query(Order)
        if actor.role == "customer":
            query = query.filter(Order.customer_id == actor.id)
        elif actor.role == "vendor":
            query = query.filter(Order.vendor_id == actor.id)
        return query

    # === Lecture ===

    def get(self, actor: Principal, order_id: str) -> Order:
        order = self._get(order_id)
        authorize(actor, "order.view", order)
        return order

    def list(self, actor: Principal, status: Optional[str] = None) -> List[Order]:
        query = self._scoped_query(actor)
        if status:
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc()).all()

    def stats(self, actor: Principal) -> Dict[str, Any]:
        """Nombre de commandes par statut, dans le périmètre de l'acteur."""
        rows = (
            self._scoped_query(actor)
            .with_entities(Order.status, func.count(Order.id))
            .group_by(Order.status)
            .all()
        )
        by_status = {status: 0 for status in RENTAL_TRANSITIONS}
        for status, count in rows:
            by_status[status] = count
        return {"total": sum(by_status.values()), "by_status": by_status}

    # === Création ===

    def create_from_quotation(
        self,
        actor: Principal,
        quotation: Quotation,
        shipping_address: Optional[Dict[str, Any]] = None,
        security_deposit: float = 0.0,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Crée la commande à partir d'un devis approuvé.

        Les réservations sont posées via reserve_if_available (verrou produit) ;
        si une ligne est indisponible, rien n'est écrit. Le devis passe en
        converted dans la même transaction.

        Raises:
            UnavailableError: une ligne n'est plus disponible
        """
        order = Order(
            id=new_id(),
            quotation_id=quotation.id,
            customer_id=quotation.customer_id,
            vendor_id=quotation.vendor_id,
            subtotal=quotation.subtotal,
            tax_rate=quotation.tax_rate,
            tax_amount=quotation.tax_amount,
            discount_amount=quotation.discount_amount or 0.0,
            total_amount=quotation.total_amount,
            security_deposit=security_deposit or 0.0,
            shipping_address=shipping_address,
            notes=notes or quotation.notes,
            status="confirmed",
            payment_status="pending",
            mirror_status="pending",
            items=[OrderItem(id=new_id(), status="pending", **_line_fields(item)) for item in quotation.items],
        )

        try:
            order.order_number = next_number(self.db, "ORD")
            self.db.add(order)
            self.db.flush()
            for item in order.items:
                self.ledger.reserve_if_available(
                    item.product_id, order.id, item.quantity, item.rental_start_date, item.rental_end_date
                )
            quotation.status = "converted"
            quotation.converted_to_order = order.id
        except DomainError:
            self.db.rollback()
            raise

        self._create_sales_mirror(order)
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"✓ Commande {order.order_number} créée depuis le devis {quotation.quotation_number}")
        log_workflow_event(
            "order_create", "order", order.id, actor.id, actor.role,
            to_status="confirmed",
            extra_data={
                "order_number": order.order_number,
                "quotation_id": quotation.id,
                "mirror_status": order.mirror_status,
            },
        )
        log_workflow_event(
            "quotation_convert", "quotation", quotation.id, actor.id, actor.role,
            from_status="approved", to_status="converted",
        )
        return order

    def _build_sales_mirror(self, order: Order) -> SaleOrder:
        """Projection de vente ; une location déjà annulée donne un miroir annulé."""
        cancelled = order.status == "cancelled"
        return SaleOrder(
            id=new_id(),
            order_number=next_number(self.db, "SO"),
            linked_order_id=order.id,
            quotation_id=order.quotation_id,
            customer_id=order.customer_id,
            vendor_id=order.vendor_id,
            subtotal=order.subtotal,
            tax_rate=order.tax_rate,
            tax_amount=order.tax_amount,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            status="cancelled" if cancelled else "confirmed",
            payment_status=order.payment_status,
            shipping_address=order.shipping_address,
            notes=f"Generated from rental order {order.order_number}",
            confirmed_at=datetime.utcnow(),
            cancelled_at=order.cancelled_at if cancelled else None,
            rejection_reason=f"Rental order {order.order_number} cancelled" if cancelled else None,
            items=[
                SaleOrderItem(
                    id=new_id(),
                    status="pending",
                    delivery_date=item.rental_start_date,
                    **_line_fields(item),
                )
                for item in order.items
            ],
        )

    def _create_sales_mirror(self, order: Order) -> bool:
        """
        Crée la commande de vente miroir dans un SAVEPOINT.

        Aucun mouvement de stock : les quantités sont déjà tenues par les
        réservations de la location. En cas d'échec, seul le SAVEPOINT est
        annulé et la commande est marquée mirror_status = failed.
        """
        try:
            with self.db.begin_nested():
                mirror = self._build_sales_mirror(order)
                self.db.add(mirror)
            order.mirror_status = "created"
            order.mirror_error = None
            logger.info(f"Commande de vente miroir {mirror.order_number} créée pour {order.order_number}")
            return True
        except Exception as e:
            order.mirror_status = "failed"
            order.mirror_error = str(e)[:500]
            logger.error(f"✗ Échec création commande de vente miroir pour {order.id}: {e}")
            log_workflow_event(
                "sales_mirror_create", "order", order.id, actor_role="system",
                result="error", extra_data={"error": str(e)},
            )
            return False

    def _mirror_of(self, order: Order) -> Optional[SaleOrder]:
        return self.db.query(SaleOrder).filter(SaleOrder.linked_order_id == order.id).first()

    def reconcile_sales_mirrors(self, actor: Principal) -> Dict[str, int]:
        """
        Rejoue la création des miroirs en échec.

        Returns:
            {"checked": n, "created": n, "failed": n}
        """
        authorize(actor, "order.reconcile_mirrors")
        orders = self.db.query(Order).filter(Order.mirror_status != "created").all()

        report = {"checked": len(orders), "created": 0, "failed": 0}
        for order in orders:
            if self._mirror_of(order) is not None:
                order.mirror_status = "created"
                order.mirror_error = None
                report["created"] += 1
            elif self._create_sales_mirror(order):
                report["created"] += 1
            else:
                report["failed"] += 1
            self.db.commit()

        logger.info(f"Réconciliation miroirs : {report}")
        log_workflow_event(
            "sales_mirror_reconcile", "order", actor_id=actor.id, actor_role=actor.role,
            result="success" if report["failed"] == 0 else "failure", extra_data=report,
        )
        return report

    # === Transitions ===

    def update_status(self, actor: Principal, order_id: str, new_status: str) -> Order:
        """
        Fait avancer la commande selon la table de transitions.

        picked_up : enlèvement enregistré (best-effort), lignes chez le client.
        cancelled : délégué à l'annulation (libération des réservations).

        Raises:
            ValidationError: statut inconnu
            ConflictError: transition interdite
        """
        order = self._get(order_id)
        authorize(actor, "order.update_status", order)
        if new_status not in RENTAL_TRANSITIONS:
            raise ValidationError(f"Invalid order status: {new_status}")
        if new_status == "cancelled":
            return self._cancel(actor, order)
        if new_status not in RENTAL_TRANSITIONS[order.status]:
            raise ConflictError(f"Cannot change order status from {order.status} to {new_status}")

        from_status = order.status
        order.status = new_status
        if new_status == "picked_up":
            order.pickup_date = datetime.utcnow()
            for item in order.items:
                item.status = "with_customer"
            self._record_pickup(order)
        elif new_status == "completed":
            for item in order.items:
                item.status = "returned"

        self.db.commit()
        self.db.refresh(order)
        log_workflow_event(
            "order_status", "order", order.id, actor.id, actor.role,
            from_status=from_status, to_status=new_status,
        )
        return order

    def _record_pickup(self, order: Order) -> None:
        """Enregistre l'enlèvement ; un échec n'annule pas la transition."""
        try:
            with self.db.begin_nested():
                self.db.add(Pickup(
                    order_id=order.id,
                    customer_id=order.customer_id,
                    vendor_id=order.vendor_id,
                    items=[
                        {"product_id": item.product_id, "quantity": item.quantity, "condition": "good"}
                        for item in order.items
                    ],
                    scheduled_date=order.pickup_date,
                    pickup_address=order.shipping_address,
                    status="completed",
                ))
        except Exception as e:
            logger.error(f"✗ Échec création de l'enlèvement pour la commande {order.id}: {e}")
            log_workflow_event(
                "pickup_create", "order", order.id, actor_role="system",
                result="error", extra_data={"error": str(e)},
            )

    def cancel(self, actor: Principal, order_id: str) -> Order:
        order = self._get(order_id)
        authorize(actor, "order.cancel", order)
        return self._cancel(actor, order)

    def _cancel(self, actor: Principal, order: Order) -> Order:
        if order.status in ("picked_up", "active"):
            raise ConflictError("Cannot cancel order that has been picked up or is active")
        if not RENTAL_TRANSITIONS[order.status]:
            raise ConflictError(f"Order is already {order.status}")

        from_status = order.status
        for product_id in {item.product_id for item in order.items}:
            self.ledger.release(product_id, order.id)

        order.status = "cancelled"
        order.cancelled_at = datetime.utcnow()

        mirror = self._mirror_of(order)
        if mirror is not None and mirror.can_be_cancelled():
            mirror.status = "cancelled"
            mirror.cancelled_at = order.cancelled_at
            mirror.rejection_reason = f"Rental order {order.order_number} cancelled"

        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Commande {order.order_number} annulée, réservations libérées")
        log_workflow_event(
            "order_cancel", "order", order.id, actor.id, actor.role,
            from_status=from_status, to_status="cancelled",
        )
        return order

    def update_payment_status(self, actor: Principal, order_id: str, payment_status: str) -> Order:
        order = self._get(order_id)
        authorize(actor, "order.update_payment", order)
        if payment_status not in ORDER_PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {payment_status}")

        order.payment_status = payment_status
        mirror = self._mirror_of(order)
        if mirror is not None:
            mirror.payment_status = payment_status

        self.db.commit()
        self.db.refresh(order)
        log_workflow_event(
            "order_payment_status", "order", order.id, actor.id, actor.role,
            extra_data={"payment_status": payment_status},
        )
        return order


class SaleOrderWorkflow:
    """Commandes de vente autonomes (déduction de stock immédiate)"""

    def __init__(self, db: Session):
        self.db = db
        self.pricing = get_pricing_engine()
        self.ledger = InventoryReservationLedger(db)

    def _get(self, sale_order_id: str) -> SaleOrder:
        sale_order = self.db.get(SaleOrder, sale_order_id)
        if sale_order is None:
            raise NotFoundError("Sale order not found")
        return sale_order

    def get(self, actor: Principal, sale_order_id: str) -> SaleOrder:
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.view", sale_order)
        return sale_order

    def list(self, actor: Principal, status: Optional[str] = None) -> List[SaleOrder]:
        query = self.db.query(SaleOrder)
        if actor.role == "customer":
            query = query.filter(SaleOrder.customer_id == actor.id)
        elif actor.role == "vendor":
            query = query.filter(SaleOrder.vendor_id == actor.id)
        if status:
            query = query.filter(SaleOrder.status == status)
        return query.order_by(SaleOrder.created_at.desc()).all()

    def create_standalone(
        self,
        actor: Principal,
        items: Sequence[Any],
        customer_id: Optional[str] = None,
        shipping_amount: float = 0.0,
        discount_amount: float = 0.0,
        shipping_address: Optional[Dict[str, Any]] = None,
        payment_method: str = "cash",
        notes: Optional[str] = None,
    ) -> SaleOrder:
        """
        Crée une commande de vente et déduit le stock de chaque ligne.

        Args:
            actor: client (achat pour lui-même), vendeur (ses propres produits) ou admin
            items: [{product_id, quantity}]
            customer_id: client destinataire (obligatoire pour vendeur / admin)

        Raises:
            ValidationError, NotFoundError, UnavailableError, AuthorizationError
        """
        authorize(actor, "sale_order.create")

        if actor.role == "customer":
            if customer_id and customer_id != actor.id:
                raise AuthorizationError("Customers can only place orders for themselves")
            customer_id = actor.id
        elif not customer_id:
            raise ValidationError("Customer is required")
        elif self.db.get(User, customer_id) is None:
            raise NotFoundError("Customer not found")

        if not items:
            raise ValidationError("Please add at least one item")
        if (shipping_amount or 0.0) < 0 or (discount_amount or 0.0) < 0:
            raise ValidationError("Amounts cannot be negative")

        lines = []
        vendor_ids = set()
        for position, item in enumerate(items):
            if item.quantity is None or item.quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            product = self.db.get(Product, item.product_id)
            if product is None:
                raise NotFoundError(f"Product {item.product_id} not found")
            if not product.is_sellable:
                raise ValidationError(f"Product {product.name} is not available for sale")
            if (product.quantity_on_hand or 0) < item.quantity:
                raise UnavailableError(f"Insufficient stock for product {product.name}")
            vendor_ids.add(product.vendor_id)

            line = self.pricing.price_sale_item(product, item.quantity)
            lines.append(SaleOrderItem(
                id=new_id(),
                position=position,
                product_id=product.id,
                quantity=item.quantity,
                duration_value=line.duration.value,
                price_per_unit=line.price_per_unit,
                total_price=line.total_price,
                tax_rate=item_tax_rate(product.category, product.tax_rate),
                category=product.category,
                status="pending",
            ))

        if len(vendor_ids) != 1:
            raise ValidationError("All items must belong to the same vendor")
        vendor_id = vendor_ids.pop()
        if actor.role == "vendor" and vendor_id != actor.id:
            raise AuthorizationError("You can only sell your own products")

        summary = self.pricing.aggregate(lines, discount_amount)
        sale_order = SaleOrder(
            id=new_id(),
            customer_id=customer_id,
            vendor_id=vendor_id,
            subtotal=summary.subtotal,
            tax_rate=summary.effective_tax_rate,
            tax_amount=summary.total_tax,
            shipping_amount=shipping_amount or 0.0,
            discount_amount=summary.discount_amount,
            total_amount=summary.total_amount + (shipping_amount or 0.0),
            status="draft",
            payment_status="pending",
            payment_method=payment_method,
            shipping_address=shipping_address,
            notes=notes,
            items=lines,
        )

        try:
            sale_order.order_number = next_number(self.db, "SO")
            for line in lines:
                self.ledger.deduct_stock(line.product_id, line.quantity)
            self.db.add(sale_order)
            self.db.commit()
        except DomainError:
            self.db.rollback()
            raise
        self.db.refresh(sale_order)

        logger.info(f"✓ Commande de vente {sale_order.order_number} créée ({sale_order.total_amount:.2f})")
        log_workflow_event(
            "sale_order_create", "sale_order", sale_order.id, actor.id, actor.role,
            to_status="draft",
            extra_data={"order_number": sale_order.order_number, "total_amount": sale_order.total_amount},
        )
        return sale_order

    def update_status(
        self,
        actor: Principal,
        sale_order_id: str,
        new_status: str,
        reason: Optional[str] = None,
    ) -> SaleOrder:
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.update_status", sale_order)
        if new_status not in SALE_TRANSITIONS:
            raise ValidationError(f"Invalid sale order status: {new_status}")
        if new_status == "cancelled":
            return self._cancel(actor, sale_order, reason or "Cancelled by vendor")
        if new_status == "refunded":
            return self._refund(actor, sale_order, None, reason or "Refunded by vendor")
        if new_status not in SALE_TRANSITIONS[sale_order.status]:
            raise ConflictError(f"Cannot change sale order status from {sale_order.status} to {new_status}")

        from_status = sale_order.status
        sale_order.status = new_status
        timestamp_field = SALE_TIMESTAMPS.get(new_status)
        if timestamp_field:
            setattr(sale_order, timestamp_field, datetime.utcnow())
        if new_status == "delivered":
            for item in sale_order.items:
                item.status = "delivered"

        self.db.commit()
        self.db.refresh(sale_order)
        log_workflow_event(
            "sale_order_status", "sale_order", sale_order.id, actor.id, actor.role,
            from_status=from_status, to_status=new_status,
        )
        return sale_order

    def cancel(self, actor: Principal, sale_order_id: str, reason: Optional[str]) -> SaleOrder:
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.cancel", sale_order)
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")
        return self._cancel(actor, sale_order, reason.strip())

    def _cancel(self, actor: Principal, sale_order: SaleOrder, reason: str) -> SaleOrder:
        if sale_order.linked_order_id:
            raise ConflictError("This sale order mirrors a rental order, cancel the rental order instead")
        if not sale_order.can_be_cancelled():
            raise ConflictError(f"Cannot cancel a {sale_order.status} sale order")

        from_status = sale_order.status
        for item in sale_order.items:
            self.ledger.restore_stock(item.product_id, item.quantity)

        sale_order.status = "cancelled"
        sale_order.cancelled_at = datetime.utcnow()
        sale_order.rejection_reason = reason

        self.db.commit()
        self.db.refresh(sale_order)
        log_workflow_event(
            "sale_order_cancel", "sale_order", sale_order.id, actor.id, actor.role,
            from_status=from_status, to_status="cancelled", extra_data={"reason": reason},
        )
        return sale_order

    def refund(
        self,
        actor: Principal,
        sale_order_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> SaleOrder:
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.refund", sale_order)
        if not reason or not reason.strip():
            raise ValidationError("Refund reason is required")
        return self._refund(actor, sale_order, amount, reason.strip())

    def _refund(self, actor: Principal, sale_order: SaleOrder, amount: Optional[float], reason: str) -> SaleOrder:
        if sale_order.linked_order_id:
            raise ConflictError("This sale order mirrors a rental order, it cannot be refunded on its own")
        if not sale_order.can_be_refunded():
            raise ConflictError("Only delivered and paid sale orders can be refunded")
        refund_amount = sale_order.total_amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > sale_order.total_amount:
            raise ValidationError("Refund amount must be between 0 and the order total")

        sale_order.status = "refunded"
        sale_order.payment_status = "refunded"
        sale_order.refund_amount = refund_amount
        sale_order.refund_reason = reason

        self.db.commit()
        self.db.refresh(sale_order)
        log_workflow_event(
            "sale_order_refund", "sale_order", sale_order.id, actor.id, actor.role,
            from_status="delivered", to_status="refunded", extra_data={"amount": refund_amount},
        )
        return sale_order

    def update_payment_status(self, actor: Principal, sale_order_id: str, payment_status: str) -> SaleOrder:
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.update_payment", sale_order)
        if payment_status not in SALE_PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {payment_status}")
        if sale_order.status in ("cancelled", "refunded"):
            raise ConflictError(f"Cannot update payment of a {sale_order.status} sale order")

        sale_order.payment_status = payment_status
        self.db.commit()
        self.db.refresh(sale_order)
        log_workflow_event(
            "sale_order_payment_status", "sale_order", sale_order.id, actor.id, actor.role,
            extra_data={"payment_status": payment_status},
        )
        return sale_order

    def delete(self, actor: Principal, sale_order_id: str) -> None:
        """Supprime un brouillon et remet son stock en rayon."""
        sale_order = self._get(sale_order_id)
        authorize(actor, "sale_order.delete", sale_order)
        if sale_order.status != "draft":
            raise ConflictError("Only draft sale orders can be deleted")

        if not sale_order.linked_order_id:
            for item in sale_order.items:
                self.ledger.restore_stock(item.product_id, item.quantity)
        self.db.delete(sale_order)
        self.db.commit()
        log_workflow_event(
            "sale_order_delete", "sale_order", sale_order_id, actor.id, actor.role, from_status="draft",
        )
