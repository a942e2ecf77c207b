"""
Workflow des factures

Une facture par commande (location ou vente). Le statut découle des
paiements : draft (rien payé), partial, paid. overdue est calculé à la
lecture quand l'échéance est dépassée ; sent / cancelled / overdue peuvent
aussi être posés manuellement selon la table de transitions.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from core.config import get_settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.logging import log_workflow_event
from core.policy import authorize
from core.security import Principal
from db.models import Invoice, InvoiceItem, Order, Payment, SaleOrder, new_id
from services.pricing_engine import get_pricing_engine
from services.sequence_service import next_number
from services.tax_policy import item_tax_rate

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS: Dict[str, frozenset] = {
    "draft": frozenset({"sent", "cancelled"}),
    "sent": frozenset({"cancelled", "overdue"}),
    "overdue": frozenset({"cancelled"}),
    "partial": frozenset({"overdue"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

DISCOUNT_TYPES = frozenset({"fixed", "percentage"})
PAYMENT_TYPES = frozenset({"full", "partial", "deposit", "advance"})
ORDER_TYPES = frozenset({"rental", "sale"})

# Tolérance des comparaisons de montants en flottant
AMOUNT_EPSILON = 1e-6


def effective_status(invoice: Invoice, now: Optional[datetime] = None) -> str:
    """overdue si non soldée, non annulée et échéance dépassée ; sinon le statut stocké."""
    now = now or datetime.utcnow()
    if invoice.status not in ("paid", "cancelled") and invoice.due_date is not None and invoice.due_date < now:
        return "overdue"
    return invoice.status


def format_rental_period(start: Optional[datetime], end: Optional[datetime]) -> str:
    if start is None or end is None:
        return "N/A"
    return f"{start:%d/%m/%Y} - {end:%d/%m/%Y}"


class InvoiceWorkflow:
    """Facturation des commandes et suivi des paiements"""

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.pricing = get_pricing_engine()

    def _get(self, invoice_id: str) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def _resolve_order(self, order_id: str, order_type: Optional[str]) -> Union[Order, SaleOrder]:
        """Cherche d'abord la commande de location, puis la commande de vente."""
        if order_type is not None and order_type not in ORDER_TYPES:
            raise ValidationError(f"Invalid order type: {order_type}")

        if order_type in (None, "rental"):
            order = self.db.get(Order, order_id)
            if order is not None:
                return order
        if order_type in (None, "sale"):
            sale_order = self.db.get(SaleOrder, order_id)
            if sale_order is not None:
                return sale_order
        raise NotFoundError("Order not found")

    # === Lecture ===

    def get(self, actor: Principal, invoice_id: str) -> Invoice:
        invoice = self._get(invoice_id)
        authorize(actor, "invoice.view", invoice)
        return invoice

    def list(self, actor: Principal, status: Optional[str] = None) -> List[Invoice]:
        query = self.db.query(Invoice)
        if actor.role == "customer":
            query = query.filter(Invoice.customer_id == actor.id)
        elif actor.role == "vendor":
            query = query.filter(Invoice.vendor_id == actor.id)
        if status:
            query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.created_at.desc()).all()

    # === Création ===

    def create_from_order(
        self,
        actor: Principal,
        order_id: str,
        order_type: Optional[str] = None,
        due_date: Optional[datetime] = None,
        discount: float = 0.0,
        discount_type: str = "fixed",
        payment_type: str = "full",
        initial_payment: float = 0.0,
        payment_method: str = "cash",
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Facture une commande de location ou de vente.

        Le taux de taxe de chaque ligne est recalculé depuis la catégorie
        actuelle du produit (ou sa surcharge), il peut donc différer de celui
        de la commande si la grille a changé entre-temps.

        Args:
            order_id: commande de location ou de vente
            order_type: rental | sale (résolution automatique si absent)
            discount / discount_type: montant fixe ou pourcentage du sous-total
            initial_payment: acompte encaissé à la création (<= total)

        Raises:
            NotFoundError, ConflictError (facture existante), ValidationError
        """
        order = self._resolve_order(order_id, order_type)
        resolved_type = "rental" if isinstance(order, Order) else "sale"
        authorize(actor, "invoice.create", order)

        if self.db.query(Invoice).filter(Invoice.order_id == order.id).first() is not None:
            raise ConflictError("Invoice already exists for this order")
        if resolved_type == "sale" and order.linked_order_id:
            raise ConflictError("This sale order mirrors a rental order, invoice the rental order instead")
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Invalid discount type: {discount_type}")
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError(f"Invalid payment type: {payment_type}")
        if (discount or 0.0) < 0 or (initial_payment or 0.0) < 0:
            raise ValidationError("Amounts cannot be negative")

        items = []
        for position, line in enumerate(order.items):
            product = line.product
            category = product.category if product is not None else line.category
            override = product.tax_rate if product is not None else line.tax_rate
            items.append(InvoiceItem(
                id=new_id(),
                position=position,
                product_id=line.product_id,
                product_name=product.name if product is not None else None,
                quantity=line.quantity,
                rental_start_date=line.rental_start_date,
                rental_end_date=line.rental_end_date,
                duration_value=line.duration_value,
                duration_unit=line.duration_unit,
                price_per_unit=line.price_per_unit,
                total_price=line.total_price,
                tax_rate=item_tax_rate(category, override),
                category=category,
                rental_period=format_rental_period(line.rental_start_date, line.rental_end_date)
                if resolved_type == "rental" else "N/A",
            ))

        subtotal = sum(item.total_price for item in items)
        discount_amount = subtotal * (discount or 0.0) / 100 if discount_type == "percentage" else (discount or 0.0)
        summary = self.pricing.aggregate(items, discount_amount, discount_type)
        split = self.pricing.split_cgst_sgst(summary.total_tax)

        total_amount = summary.total_amount
        paid_amount = initial_payment or 0.0
        if paid_amount - total_amount > AMOUNT_EPSILON:
            raise ValidationError("Initial payment cannot exceed the invoice total")

        balance_amount = max(total_amount - paid_amount, 0.0)
        if paid_amount > 0 and balance_amount <= AMOUNT_EPSILON:
            balance_amount = 0.0
            status = "paid"
        elif paid_amount > 0:
            status = "partial"
        else:
            status = "draft"

        invoice = Invoice(
            id=new_id(),
            order_id=order.id,
            order_type=resolved_type,
            customer_id=order.customer_id,
            vendor_id=order.vendor_id,
            items=items,
            subtotal=summary.subtotal,
            discount=summary.discount_amount,
            discount_type=discount_type,
            tax_rate=summary.effective_tax_rate,
            cgst=split.cgst,
            sgst=split.sgst,
            igst=split.igst,
            tax_amount=summary.total_tax,
            total_amount=total_amount,
            security_deposit=getattr(order, "security_deposit", 0.0) or 0.0,
            late_return_fee=getattr(order, "late_return_fee", 0.0) or 0.0,
            paid_amount=paid_amount,
            balance_amount=balance_amount,
            payment_type=payment_type,
            status=status,
            due_date=due_date or datetime.utcnow() + timedelta(days=self.settings.invoice_due_days),
            invoice_date=datetime.utcnow(),
            notes=notes,
        )
        if paid_amount > 0:
            invoice.payments.append(Payment(
                position=0,
                amount=paid_amount,
                method=payment_method,
                date=datetime.utcnow(),
                notes="Initial payment",
            ))

        invoice.invoice_number = next_number(self.db, "INV")
        self.db.add(invoice)
        self.db.flush()
        if paid_amount > 0:
            self._propagate_payment_status(invoice)
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"✓ Facture {invoice.invoice_number} créée pour {resolved_type} {order.id}")
        log_workflow_event(
            "invoice_create", "invoice", invoice.id, actor.id, actor.role,
            to_status=status,
            extra_data={
                "invoice_number": invoice.invoice_number,
                "order_id": order.id,
                "total_amount": total_amount,
                "paid_amount": paid_amount,
            },
        )
        return invoice

    # === Paiements ===

    def add_payment(
        self,
        actor: Principal,
        invoice_id: str,
        amount: float,
        method: str = "cash",
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Enregistre un paiement (append-only).

        Invariant : paid_amount + balance_amount == total_amount, balance >= 0.

        Raises:
            ConflictError: facture soldée ou annulée
            ValidationError: montant <= 0 ou supérieur au solde
        """
        invoice = self._get(invoice_id)
        authorize(actor, "invoice.add_payment", invoice)
        if invoice.status in ("paid", "cancelled"):
            raise ConflictError(f"Cannot add payment to a {invoice.status} invoice")
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        if amount - invoice.balance_amount > AMOUNT_EPSILON:
            raise ValidationError(
                f"Payment amount cannot exceed the balance due ({invoice.balance_amount:.2f})"
            )

        from_status = invoice.status
        invoice.payments.append(Payment(
            position=len(invoice.payments),
            amount=amount,
            method=method,
            transaction_id=transaction_id,
            date=datetime.utcnow(),
            notes=notes,
        ))
        invoice.paid_amount = (invoice.paid_amount or 0.0) + amount
        invoice.balance_amount = max(invoice.total_amount - invoice.paid_amount, 0.0)
        if invoice.balance_amount <= AMOUNT_EPSILON:
            invoice.balance_amount = 0.0
            invoice.status = "paid"
        else:
            invoice.status = "partial"

        self.db.flush()
        self._propagate_payment_status(invoice)
        self.db.commit()
        self.db.refresh(invoice)

        log_workflow_event(
            "invoice_payment", "invoice", invoice.id, actor.id, actor.role,
            from_status=from_status, to_status=invoice.status,
            extra_data={"amount": amount, "balance_amount": invoice.balance_amount},
        )
        return invoice

    def _propagate_payment_status(self, invoice: Invoice) -> None:
        """
        Reporte l'état de paiement sur la commande facturée (SAVEPOINT).

        Un échec est journalisé ; la facture reste enregistrée.
        """
        payment_status = "paid" if invoice.status == "paid" else "partial"
        try:
            with self.db.begin_nested():
                if invoice.order_type == "rental":
                    order = self.db.get(Order, invoice.order_id)
                    if order is None:
                        raise NotFoundError(f"Order {invoice.order_id} not found")
                    order.payment_status = payment_status
                    mirror = self.db.query(SaleOrder).filter(SaleOrder.linked_order_id == order.id).first()
                    if mirror is not None:
                        mirror.payment_status = payment_status
                else:
                    sale_order = self.db.get(SaleOrder, invoice.order_id)
                    if sale_order is None:
                        raise NotFoundError(f"Sale order {invoice.order_id} not found")
                    sale_order.payment_status = payment_status
        except Exception as e:
            logger.error(f"✗ Échec propagation du paiement de la facture {invoice.id} vers {invoice.order_id}: {e}")
            log_workflow_event(
                "payment_status_propagate", "invoice", invoice.id, actor_role="system",
                result="error", extra_data={"order_id": invoice.order_id, "error": str(e)},
            )

    # === Statut ===

    def update_status(self, actor: Principal, invoice_id: str, status: str) -> Invoice:
        invoice = self._get(invoice_id)
        authorize(actor, "invoice.update_status", invoice)
        if status not in INVOICE_TRANSITIONS:
            raise ValidationError(f"Invalid invoice status: {status}")
        if status not in INVOICE_TRANSITIONS[invoice.status]:
            raise ConflictError(f"Cannot change invoice status from {invoice.status} to {status}")

        from_status = invoice.status
        invoice.status = status
        self.db.commit()
        self.db.refresh(invoice)
        log_workflow_event(
            "invoice_status", "invoice", invoice.id, actor.id, actor.role,
            from_status=from_status, to_status=status,
        )
        return invoice
