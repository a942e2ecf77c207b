"""
Moteur de pricing location / vente
Paliers horaire / journalier / hebdomadaire, taxe par ligne et remise proportionnelle
"""

import logging
import math
from datetime import datetime
from typing import Any, Iterable, Optional

from core.errors import ValidationError
from services.pricing_models import (
    DurationUnit,
    ItemTax,
    LinePrice,
    PricedItem,
    PricingSummary,
    ProductPricing,
    RentalDuration,
    TaxSplit,
)
from services.tax_policy import DEFAULT_TAX_RATE

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS


class PricingEngine:
    """
    Moteur de pricing déterministe (aucune I/O)

    PALIERS DE LOCATION :

    jours = ceil(durée / 1 jour), une durée entamée compte pour un jour entier

    1. jours < 1             → tarif horaire,      durée = ceil(heures)
    2. jours < 7             → tarif journalier,   durée = jours
    3. Sinon                 → tarif hebdomadaire, durée = ceil(jours / 7)

    total ligne = prix unitaire × quantité × durée

    AGRÉGATION :

    - La remise est répartie sur les lignes au prorata de leur montant
    - Chaque ligne est taxée à son propre taux sur son montant remisé
    - Le taux affiché est la moyenne pondérée (taxe totale / sous-total remisé)
    """

    def _snapshot(self, product: Any) -> ProductPricing:
        if isinstance(product, ProductPricing):
            return product
        return ProductPricing.model_validate(product)

    def price_line_item(
        self,
        product: Any,
        quantity: int,
        start_date: datetime,
        end_date: datetime
    ) -> LinePrice:
        """
        Tarifie une ligne de location.

        Args:
            product: Product ORM ou ProductPricing
            quantity: quantité (>= 1)
            start_date / end_date: fenêtre de location (start < end)

        Returns:
            LinePrice (prix unitaire du palier, durée, total)
        """
        if end_date <= start_date:
            raise ValidationError("End date must be after start date")

        pricing = self._snapshot(product)
        span_seconds = (end_date - start_date).total_seconds()

        days = math.ceil(span_seconds / DAY_SECONDS)

        if days < 1:
            duration = RentalDuration(value=math.ceil(span_seconds / HOUR_SECONDS), unit=DurationUnit.HOUR)
            price_per_unit = pricing.hourly_rate
        elif days < 7:
            duration = RentalDuration(value=days, unit=DurationUnit.DAY)
            price_per_unit = pricing.daily_rate
        else:
            duration = RentalDuration(value=math.ceil(days / 7), unit=DurationUnit.WEEK)
            price_per_unit = pricing.weekly_rate

        if not price_per_unit:
            logger.warning(
                f"Palier {duration.unit.value} absent pour le produit {pricing.id or pricing.name} - total à 0"
            )

        return LinePrice(
            price_per_unit=price_per_unit,
            duration=duration,
            total_price=price_per_unit * quantity * duration.value
        )

    def price_sale_item(self, product: Any, quantity: int) -> LinePrice:
        """Tarifie une ligne de vente (prix de vente × quantité)."""
        pricing = self._snapshot(product)
        return LinePrice(
            price_per_unit=pricing.sale_price,
            duration=RentalDuration(value=1, unit=None),
            total_price=pricing.sale_price * quantity
        )

    def aggregate(
        self,
        items: Iterable[Any],
        discount_amount: Optional[float] = 0.0,
        discount_type: Optional[str] = None
    ) -> PricingSummary:
        """
        Calcule les totaux d'un document.

        Args:
            items: lignes exposant total_price et tax_rate
            discount_amount: remise globale (bornée au sous-total)
            discount_type: libellé de la remise (coupon, promo, loyalty, fixed...)

        Returns:
            PricingSummary
        """
        priced = [PricedItem.model_validate(item) for item in items]
        subtotal = sum(item.total_price for item in priced)
        discount = min(max(discount_amount or 0.0, 0.0), subtotal)
        subtotal_after_discount = subtotal - discount

        item_taxes = []
        for item in priced:
            item_discount = (item.total_price / subtotal) * discount if subtotal > 0 else 0.0
            taxable = item.total_price - item_discount
            item_taxes.append(ItemTax(
                item_subtotal=item.total_price,
                item_discount=item_discount,
                taxable_amount=taxable,
                tax_rate=item.tax_rate,
                tax_amount=(taxable * item.tax_rate) / 100
            ))

        total_tax = sum(entry.tax_amount for entry in item_taxes)
        if subtotal_after_discount > 0:
            effective_tax_rate = (total_tax * 100) / subtotal_after_discount
        else:
            effective_tax_rate = DEFAULT_TAX_RATE

        return PricingSummary(
            subtotal=subtotal,
            discount_amount=discount,
            discount_type=discount_type if discount > 0 else None,
            subtotal_after_discount=subtotal_after_discount,
            item_taxes=item_taxes,
            total_tax=total_tax,
            effective_tax_rate=effective_tax_rate,
            total_amount=subtotal_after_discount + total_tax
        )

    def split_cgst_sgst(self, total_tax: float) -> TaxSplit:
        """Moitiés égales CGST / SGST, IGST toujours nul."""
        half = total_tax / 2
        return TaxSplit(cgst=half, sgst=half, igst=0.0)


# Instance singleton
_pricing_engine: Optional[PricingEngine] = None


def get_pricing_engine() -> PricingEngine:
    """Factory pour obtenir l'instance du moteur de pricing"""
    global _pricing_engine
    if _pricing_engine is None:
        _pricing_engine = PricingEngine()
        logger.info("PricingEngine initialisé")
    return _pricing_engine
