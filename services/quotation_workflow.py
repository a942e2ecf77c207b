"""
Workflow des devis de location

    draft → pending → {approved, rejected, expired} ; approved → converted
    draft / pending / approved → cancelled

Les contre-offres (client ou vendeur) gardent le devis en pending.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.config import get_settings
from core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from core.logging import log_workflow_event
from core.policy import authorize
from core.security import Principal
from db.models import CounterOffer, Product, Quotation, QuotationItem, new_id
from services.inventory_ledger import InventoryReservationLedger
from services.pricing_engine import get_pricing_engine
from services.sequence_service import next_number
from services.tax_policy import item_tax_rate

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"rejected", "expired", "cancelled", "converted"})
CANCELLABLE_STATUSES = frozenset({"draft", "pending", "approved"})
DISCOUNT_TYPES = frozenset({"coupon", "promo", "loyalty"})


class QuotationWorkflow:
    """Cycle de vie d'un devis : création, négociation, décision, conversion"""

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.pricing = get_pricing_engine()
        self.ledger = InventoryReservationLedger(db)

    # === Helpers ===

    def _get(self, quotation_id: str) -> Quotation:
        quotation = self.db.get(Quotation, quotation_id)
        if quotation is None:
            raise NotFoundError("Quotation not found")
        return quotation

    def _build_items(self, items: Sequence[Any]) -> List[QuotationItem]:
        """
        Valide et tarife les lignes demandées.

        Tout ou rien : la première ligne invalide ou indisponible interrompt
        la création, aucune ligne n'est conservée.
        """
        if not items:
            raise ValidationError("Please add at least one item")

        built = []
        for position, item in enumerate(items):
            if not item.product_id:
                raise ValidationError("Each item requires a product")
            if item.quantity is None or item.quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            if item.rental_start_date is None or item.rental_end_date is None:
                raise ValidationError("Rental start and end dates are required")
            if item.rental_start_date >= item.rental_end_date:
                raise ValidationError("End date must be after start date")

            product = self.db.get(Product, item.product_id)
            if product is None:
                raise NotFoundError(f"Product {item.product_id} not found")
            if not product.is_rentable:
                raise ValidationError(f"Product {product.name} is not available for rent")

            if not self.ledger.check_availability(
                product, item.quantity, item.rental_start_date, item.rental_end_date
            ):
                raise UnavailableError(f"Product {product.name} is not available for the selected dates")

            line = self.pricing.price_line_item(
                product, item.quantity, item.rental_start_date, item.rental_end_date
            )
            built.append(QuotationItem(
                id=new_id(),
                position=position,
                product_id=product.id,
                product=product,
                quantity=item.quantity,
                rental_start_date=item.rental_start_date,
                rental_end_date=item.rental_end_date,
                duration_value=line.duration.value,
                duration_unit=line.duration.unit.value,
                price_per_unit=line.price_per_unit,
                total_price=line.total_price,
                tax_rate=item_tax_rate(product.category, product.tax_rate),
                category=product.category,
            ))
        return built

    def _apply_totals(self, quotation: Quotation, discount_amount: float, discount_type: Optional[str]) -> None:
        if discount_type is not None and discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Invalid discount type: {discount_type}")
        summary = self.pricing.aggregate(quotation.items, discount_amount, discount_type)
        quotation.subtotal = summary.subtotal
        quotation.discount_amount = summary.discount_amount
        quotation.discount_type = summary.discount_type
        quotation.tax_rate = summary.effective_tax_rate
        quotation.tax_amount = summary.total_tax
        quotation.total_amount = summary.total_amount

    def _transition(self, quotation: Quotation, actor: Principal, event: str, to_status: str, **extra) -> None:
        from_status = quotation.status
        quotation.status = to_status
        self.db.commit()
        self.db.refresh(quotation)
        log_workflow_event(
            event, "quotation", quotation.id, actor.id, actor.role,
            from_status=from_status, to_status=to_status,
            extra_data=extra or None,
        )

    # === Lecture ===

    def get(self, actor: Principal, quotation_id: str) -> Quotation:
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.view", quotation)
        return quotation

    def list(self, actor: Principal, status: Optional[str] = None) -> List[Quotation]:
        """Devis visibles par l'acteur : les siens (client), ceux assignés (vendeur), tous (admin)."""
        query = self.db.query(Quotation)
        if actor.role == "customer":
            query = query.filter(Quotation.customer_id == actor.id)
        elif actor.role == "vendor":
            query = query.filter(Quotation.vendor_id == actor.id)
        if status:
            query = query.filter(Quotation.status == status)
        return query.order_by(Quotation.created_at.desc()).all()

    # === Écriture ===

    def create(
        self,
        actor: Principal,
        items: Sequence[Any],
        notes: Optional[str] = None,
        discount_amount: float = 0.0,
        discount_type: Optional[str] = None,
    ) -> Quotation:
        """
        Crée un devis brouillon.

        Args:
            actor: client (ou admin) demandeur
            items: lignes {product_id, quantity, rental_start_date, rental_end_date}
            notes: commentaire libre
            discount_amount / discount_type: remise éventuelle (coupon, promo, loyalty)

        Returns:
            Quotation en statut draft

        Raises:
            ValidationError, NotFoundError, UnavailableError
        """
        authorize(actor, "quotation.create")
        built = self._build_items(items)

        quotation = Quotation(
            id=new_id(),
            customer_id=actor.id,
            vendor_id=built[0].product.vendor_id,
            items=built,
            status="draft",
            notes=notes,
            valid_until=datetime.utcnow() + timedelta(days=self.settings.quotation_validity_days),
            vendor_adjusted_pricing=[],
        )
        self._apply_totals(quotation, discount_amount, discount_type)
        quotation.quotation_number = next_number(self.db, "QT")

        self.db.add(quotation)
        self.db.commit()
        self.db.refresh(quotation)

        logger.info(f"✓ Devis {quotation.quotation_number} créé ({quotation.total_amount:.2f})")
        log_workflow_event(
            "quotation_create", "quotation", quotation.id, actor.id, actor.role,
            to_status="draft",
            extra_data={"quotation_number": quotation.quotation_number, "total_amount": quotation.total_amount},
        )
        return quotation

    def update(
        self,
        actor: Principal,
        quotation_id: str,
        notes: Optional[str] = None,
        items: Optional[Sequence[Any]] = None,
        discount_amount: Optional[float] = None,
        discount_type: Optional[str] = None,
    ) -> Quotation:
        """Modifie un brouillon ; les lignes remplacées sont re-tarifées."""
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.update", quotation)
        if quotation.status != "draft":
            raise ConflictError("Only draft quotations can be updated")

        if items is not None:
            quotation.items = self._build_items(items)
            quotation.vendor_id = quotation.items[0].product.vendor_id
        if items is not None or discount_amount is not None or discount_type is not None:
            self._apply_totals(
                quotation,
                quotation.discount_amount if discount_amount is None else discount_amount,
                quotation.discount_type if discount_type is None else discount_type,
            )
        if notes is not None:
            quotation.notes = notes

        self.db.commit()
        self.db.refresh(quotation)
        log_workflow_event("quotation_update", "quotation", quotation.id, actor.id, actor.role)
        return quotation

    def submit(self, actor: Principal, quotation_id: str) -> Quotation:
        """
        Soumet le brouillon au vendeur.

        Un devis dont la validité est dépassée passe en expired (persisté)
        et l'erreur est renvoyée à l'appelant.
        """
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.submit", quotation)
        if quotation.status != "draft":
            raise ConflictError("Only draft quotations can be submitted")

        if quotation.valid_until is not None and datetime.utcnow() > quotation.valid_until:
            self._transition(quotation, actor, "quotation_expire", "expired")
            logger.warning(f"Devis {quotation.quotation_number} expiré à la soumission")
            raise ConflictError("Quotation has expired")

        self._transition(quotation, actor, "quotation_submit", "pending")
        return quotation

    def counter_offer(
        self,
        actor: Principal,
        quotation_id: str,
        items: Sequence[Any],
        notes: str = "",
    ) -> Quotation:
        """
        Contre-offre de prix (client propriétaire, vendeur assigné ou admin).

        Seuls les prix unitaires changent ; quantités et dates sont figées.
        Autorisée en pending, ou en approved lorsqu'une négociation existe
        déjà (le devis repasse alors en pending).

        Args:
            items: [{product_id, adjusted_price}]
            notes: commentaire de la contre-offre
        """
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.counter_offer", quotation)

        reopens = quotation.status == "approved" and len(quotation.counter_offers) > 0
        if quotation.status != "pending" and not reopens:
            raise ConflictError("Counter offers are only allowed on pending quotations")
        if not items:
            raise ValidationError("Counter offer requires at least one adjusted price")

        adjusted: Dict[str, float] = {}
        known_products = {line.product_id for line in quotation.items}
        for item in items:
            if item.product_id not in known_products:
                raise ValidationError(f"Product {item.product_id} is not part of this quotation")
            if item.adjusted_price is None or item.adjusted_price < 0:
                raise ValidationError("Adjusted price must be a positive amount")
            adjusted[item.product_id] = item.adjusted_price

        offered_items = []
        for line in quotation.items:
            if line.product_id in adjusted:
                line.price_per_unit = adjusted[line.product_id]
                line.total_price = line.price_per_unit * line.quantity * (line.duration_value or 1)
            offered_items.append({
                "product_id": line.product_id,
                "price_per_unit": line.price_per_unit,
                "total_price": line.total_price,
            })

        if self.settings.freeze_tax_rate_during_negotiation:
            # Taux moyen du devis conservé pendant toute la négociation
            subtotal = sum(line.total_price for line in quotation.items)
            discount = min(quotation.discount_amount or 0.0, subtotal)
            tax_amount = (subtotal - discount) * (quotation.tax_rate or 0.0) / 100
            quotation.subtotal = subtotal
            quotation.discount_amount = discount
            quotation.tax_amount = tax_amount
            quotation.total_amount = subtotal - discount + tax_amount
        else:
            self._apply_totals(quotation, quotation.discount_amount, quotation.discount_type)

        quotation.counter_offers.append(CounterOffer(
            position=len(quotation.counter_offers),
            offered_by=actor.id,
            offered_by_role=actor.role,
            items=offered_items,
            subtotal=quotation.subtotal,
            tax_amount=quotation.tax_amount,
            total_amount=quotation.total_amount,
            notes=notes or "",
            created_at=datetime.utcnow(),
        ))
        if reopens:
            quotation.approved_at = None
            quotation.approved_by = None

        self._transition(
            quotation, actor, "quotation_counter_offer", "pending",
            total_amount=quotation.total_amount, offers=len(quotation.counter_offers),
        )
        return quotation

    def approve(
        self,
        actor: Principal,
        quotation_id: str,
        vendor_notes: Optional[str] = None,
        adjusted_pricing: Optional[List[Dict[str, Any]]] = None,
    ) -> Quotation:
        """
        Approuve un devis pending.

        Le vendeur assigné ou l'admin approuvent ; le client propriétaire peut
        approuver uniquement pour accepter une contre-offre. La disponibilité
        de chaque ligne est revérifiée au moment de la décision.
        """
        quotation = self._get(quotation_id)
        if actor.role == "customer":
            authorize(actor, "quotation.accept_counter_offer", quotation)
            if not quotation.counter_offers:
                raise AuthorizationError("Only the vendor can approve this quotation")
        else:
            authorize(actor, "quotation.approve", quotation)

        if quotation.status != "pending":
            raise ConflictError("Only pending quotations can be approved")

        for line in quotation.items:
            if not self.ledger.check_availability(
                line.product, line.quantity, line.rental_start_date, line.rental_end_date
            ):
                name = line.product.name if line.product else line.product_id
                raise UnavailableError(f"Product {name} is no longer available for the selected dates")

        quotation.approved_at = datetime.utcnow()
        quotation.approved_by = actor.id
        if actor.role in ("vendor", "admin"):
            if vendor_notes is not None:
                quotation.vendor_notes = vendor_notes
            if adjusted_pricing is not None:
                quotation.vendor_adjusted_pricing = adjusted_pricing

        self._transition(quotation, actor, "quotation_approve", "approved")
        return quotation

    def reject(self, actor: Principal, quotation_id: str, rejection_reason: Optional[str]) -> Quotation:
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.reject", quotation)
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("Rejection reason is required")
        if quotation.status != "pending":
            raise ConflictError("Only pending quotations can be rejected")

        quotation.rejected_at = datetime.utcnow()
        quotation.rejection_reason = rejection_reason.strip()
        self._transition(quotation, actor, "quotation_reject", "rejected")
        return quotation

    def cancel(self, actor: Principal, quotation_id: str) -> Quotation:
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.cancel", quotation)
        if quotation.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"Cannot cancel a {quotation.status} quotation")

        quotation.cancelled_at = datetime.utcnow()
        self._transition(quotation, actor, "quotation_cancel", "cancelled")
        return quotation

    def delete(self, actor: Principal, quotation_id: str) -> None:
        quotation = self._get(quotation_id)
        authorize(actor, "quotation.delete", quotation)
        if quotation.status != "draft":
            raise ConflictError("Only draft quotations can be deleted")

        number = quotation.quotation_number
        self.db.delete(quotation)
        self.db.commit()
        logger.info(f"Devis {number} supprimé")
        log_workflow_event("quotation_delete", "quotation", quotation_id, actor.id, actor.role, from_status="draft")

    def convert_to_order(
        self,
        actor: Principal,
        quotation_id: str,
        shipping_address: Optional[Dict[str, Any]] = None,
        security_deposit: float = 0.0,
        notes: Optional[str] = None,
    ):
        """
        Convertit un devis approuvé en commande de location.

        Un second appel échoue : le devis porte déjà la référence de commande.

        Returns:
            Order créée (statut confirmed)
        """
        from services.order_workflow import RentalOrderWorkflow

        quotation = self._get(quotation_id)
        authorize(actor, "quotation.convert", quotation)
        if quotation.converted_to_order or quotation.status == "converted":
            raise ConflictError("Quotation has already been converted to an order")
        if quotation.status != "approved":
            raise ConflictError("Only approved quotations can be converted to orders")

        return RentalOrderWorkflow(self.db).create_from_quotation(
            actor,
            quotation,
            shipping_address=shipping_address,
            security_deposit=security_deposit,
            notes=notes,
        )
