# core/policy.py - Table d'autorisation (rôle, relation au document) -> opérations

"""
Politique d'autorisation centralisée.

Chaque opération de workflow appelle `authorize()` au lieu de recalculer
localement isVendor / isCustomer / isAdmin. La relation de l'acteur au
document est déduite de `customer_id` / `vendor_id` :

    owner   : l'acteur est le client du document
    vendor  : l'acteur est le vendeur assigné au document
    other   : aucune relation

L'administrateur est autorisé partout.
"""

from typing import Any, Dict, FrozenSet, Optional, Tuple

from core.errors import AuthorizationError
from core.security import Principal

OWNER = "owner"
VENDOR = "vendor"
OTHER = "other"

POLICY: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("customer", OWNER): frozenset({
        "quotation.view",
        "quotation.update",
        "quotation.delete",
        "quotation.submit",
        "quotation.cancel",
        "quotation.counter_offer",
        "quotation.accept_counter_offer",
        "quotation.convert",
        "order.view",
        "order.cancel",
        "sale_order.view",
        "sale_order.cancel",
        "sale_order.delete",
        "invoice.view",
    }),
    ("vendor", VENDOR): frozenset({
        "quotation.view",
        "quotation.counter_offer",
        "quotation.approve",
        "quotation.reject",
        "order.view",
        "order.update_status",
        "order.update_payment",
        "sale_order.view",
        "sale_order.update_status",
        "sale_order.update_payment",
        "sale_order.cancel",
        "sale_order.delete",
        "sale_order.refund",
        "invoice.view",
        "invoice.create",
        "invoice.add_payment",
        "invoice.update_status",
    }),
}

# Opérations sans document existant : seul le rôle compte
CREATION_ROLES: Dict[str, FrozenSet[str]] = {
    "quotation.create": frozenset({"customer", "admin"}),
    "order.create": frozenset({"customer", "admin"}),
    "sale_order.create": frozenset({"customer", "vendor", "admin"}),
    "order.reconcile_mirrors": frozenset({"admin"}),
}


def relationship(principal: Principal, document: Any) -> str:
    """Relation de l'acteur au document (owner / vendor / other)."""
    if getattr(document, "customer_id", None) == principal.id:
        return OWNER
    if getattr(document, "vendor_id", None) == principal.id:
        return VENDOR
    return OTHER


def is_allowed(principal: Principal, operation: str, document: Optional[Any] = None) -> bool:
    if principal.is_admin:
        return True
    if document is None:
        return principal.role in CREATION_ROLES.get(operation, frozenset())
    allowed = POLICY.get((principal.role, relationship(principal, document)), frozenset())
    return operation in allowed


def authorize(principal: Principal, operation: str, document: Optional[Any] = None) -> None:
    """
    Vérifie que l'acteur peut exécuter l'opération.

    Raises:
        AuthorizationError (403)
    """
    if not is_allowed(principal, operation, document):
        entity = operation.split(".")[0].replace("_", " ")
        raise AuthorizationError(f"Not authorized to perform this action on this {entity}")
