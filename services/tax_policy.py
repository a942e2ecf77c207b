"""
Politique de taxe par catégorie produit.

Table fixe (pourcentages), partagée par la création de devis, de commandes,
de commandes de vente et de factures. Une surcharge de taux portée par le
produit est prioritaire sur la catégorie.
"""

from typing import Optional

DEFAULT_TAX_RATE = 18.0

TAX_RATES = {
    "Electronics": 18.0,
    "Furniture": 12.0,
    "Entertainment": 18.0,
    "Transportation": 12.0,
    "Tools & Equipment": 18.0,
    "Party Supplies": 12.0,
}


def rate_for(category: Optional[str]) -> float:
    """Taux de la catégorie, défaut 18% pour une catégorie inconnue ou absente."""
    if not category:
        return DEFAULT_TAX_RATE
    return TAX_RATES.get(category, DEFAULT_TAX_RATE)


def item_tax_rate(category: Optional[str], override: Optional[float] = None) -> float:
    # Un taux à 0 explicite reste une surcharge valide
    if override is not None:
        return float(override)
    return rate_for(category)
