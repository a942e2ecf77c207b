"""
Modèles de données du moteur de pricing location / vente
Lignes tarifées, agrégation document et ventilation CGST/SGST
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from enum import Enum


class DurationUnit(str, Enum):
    """Palier tarifaire appliqué à une ligne de location"""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


class RentalDuration(BaseModel):
    """Durée facturée d'une ligne"""
    value: int = Field(..., ge=0, description="Nombre d'unités facturées")
    unit: Optional[DurationUnit] = Field(None, description="Palier (None pour une vente)")


class ProductPricing(BaseModel):
    """Instantané tarifaire d'un produit (lu depuis le catalogue)"""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    hourly_rate: Optional[float] = Field(0.0, description="Tarif horaire")
    daily_rate: Optional[float] = Field(0.0, description="Tarif journalier")
    weekly_rate: Optional[float] = Field(0.0, description="Tarif hebdomadaire")
    sale_price: Optional[float] = Field(0.0, description="Prix de vente")
    tax_rate: Optional[float] = Field(None, description="Surcharge du taux catégorie")

    @field_validator("hourly_rate", "daily_rate", "weekly_rate", "sale_price", mode="before")
    @classmethod
    def missing_tier_is_zero(cls, v):
        """Palier absent = tarif nul (aucune erreur levée)"""
        return v or 0.0


class LinePrice(BaseModel):
    """Résultat de tarification d'une ligne"""
    price_per_unit: float
    duration: RentalDuration
    total_price: float

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "price_per_unit": 100.0,
            "duration": {"value": 3, "unit": "day"},
            "total_price": 600.0
        }
    })


class PricedItem(BaseModel):
    """Entrée minimale de l'agrégation : montant ligne + taux de taxe"""
    model_config = ConfigDict(from_attributes=True)

    total_price: float
    tax_rate: float


class ItemTax(BaseModel):
    """Taxe calculée pour une ligne, après répartition de la remise"""
    item_subtotal: float
    item_discount: float
    taxable_amount: float
    tax_rate: float
    tax_amount: float


class PricingSummary(BaseModel):
    """Totaux d'un document (devis, commande, facture)"""
    subtotal: float
    discount_amount: float = 0.0
    discount_type: Optional[str] = None
    subtotal_after_discount: float
    item_taxes: List[ItemTax] = Field(default_factory=list)
    total_tax: float
    effective_tax_rate: float = Field(..., description="Taux moyen pondéré (affichage)")
    total_amount: float


class TaxSplit(BaseModel):
    """Ventilation CGST / SGST / IGST (juridiction unique : IGST = 0)"""
    cgst: float
    sgst: float
    igst: float = 0.0
