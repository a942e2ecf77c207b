from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from db.models import Product
from db.session import get_db
from models.schemas import naive_utc
from services.inventory_ledger import InventoryReservationLedger

router = APIRouter()


@router.get("/{product_id}/availability")
def check_product_availability(
    product_id: str,
    start_date: datetime,
    end_date: datetime,
    quantity: int = Query(1, description="Quantité demandée"),
    db: Session = Depends(get_db),
):
    """Disponibilité d'un produit sur une période (consultation, aucune réservation posée)."""
    start_date, end_date = naive_utc(start_date), naive_utc(end_date)
    if start_date >= end_date:
        raise ValidationError("End date must be after start date")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")

    ledger = InventoryReservationLedger(db)
    return {
        "success": True,
        "available": ledger.check_availability(product, quantity, start_date, end_date),
        "available_quantity": max(ledger.available_quantity(product, start_date, end_date), 0),
        "quantity_on_hand": product.quantity_on_hand,
    }
