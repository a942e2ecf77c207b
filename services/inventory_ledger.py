"""
Registre des réservations d'inventaire

Toutes les mutations de stock (réservations de location, déductions de vente)
passent par ce service afin de garder l'invariant :
    somme des réservations chevauchant un instant <= quantité en stock
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.errors import NotFoundError, UnavailableError
from db.models import Product, Reservation

logger = logging.getLogger(__name__)


class InventoryReservationLedger:
    """Réservations par produit et par période, liées à un identifiant de commande"""

    def __init__(self, db: Session):
        self.db = db

    def _get_product(self, product_id: str, lock: bool = False) -> Product:
        query = self.db.query(Product).filter(Product.id == product_id)
        if lock:
            # SELECT ... FOR UPDATE (ignoré par SQLite, sérialisé par la base en prod)
            query = query.with_for_update()
        product = query.first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def reserved_quantity(self, product_id: str, start_date: datetime, end_date: datetime) -> int:
        """Quantité déjà réservée sur les réservations chevauchant [start, end]."""
        total = (
            self.db.query(func.coalesce(func.sum(Reservation.quantity), 0))
            .filter(
                Reservation.product_id == product_id,
                Reservation.start_date < end_date,
                Reservation.end_date > start_date,
            )
            .scalar()
        )
        return int(total or 0)

    def available_quantity(self, product: Product, start_date: datetime, end_date: datetime) -> int:
        return (product.quantity_on_hand or 0) - self.reserved_quantity(product.id, start_date, end_date)

    def check_availability(
        self,
        product: Optional[Product],
        quantity: int,
        start_date: datetime,
        end_date: datetime
    ) -> bool:
        """
        Vérifie la disponibilité d'un produit sur une période.

        Ne lève jamais : un produit absent ou une période invalide renvoie False.
        """
        if product is None or start_date is None or end_date is None:
            return False
        return self.available_quantity(product, start_date, end_date) >= quantity

    def reserve(
        self,
        product_id: str,
        order_id: str,
        quantity: int,
        start_date: datetime,
        end_date: datetime
    ) -> Reservation:
        """
        Ajoute une réservation (pas de dédoublonnage par commande).

        Raises:
            NotFoundError si le produit n'existe pas
        """
        self._get_product(product_id)
        reservation = Reservation(
            product_id=product_id,
            order_id=order_id,
            quantity=quantity,
            start_date=start_date,
            end_date=end_date,
        )
        self.db.add(reservation)
        self.db.flush()
        logger.info(f"Réservation {quantity}x {product_id} pour commande {order_id}")
        return reservation

    def release(self, product_id: str, order_id: str) -> int:
        """Supprime toutes les réservations d'une commande sur un produit."""
        self._get_product(product_id)
        removed = (
            self.db.query(Reservation)
            .filter(Reservation.product_id == product_id, Reservation.order_id == order_id)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        logger.info(f"{removed} réservation(s) libérée(s) sur {product_id} pour commande {order_id}")
        return removed

    def reserve_if_available(
        self,
        product_id: str,
        order_id: str,
        quantity: int,
        start_date: datetime,
        end_date: datetime
    ) -> Reservation:
        """
        Vérification et réservation atomiques.

        La ligne produit est verrouillée pendant la transaction courante, la
        vérification et l'écriture se font donc sans fenêtre de concurrence.

        Raises:
            NotFoundError: produit inconnu
            UnavailableError: quantité indisponible sur la période
        """
        product = self._get_product(product_id, lock=True)
        if not self.check_availability(product, quantity, start_date, end_date):
            logger.warning(f"✗ Indisponible : {quantity}x {product.name} du {start_date} au {end_date}")
            raise UnavailableError(f"Product {product.name} is not available for the selected dates")
        return self.reserve(product_id, order_id, quantity, start_date, end_date)

    def deduct_stock(self, product_id: str, quantity: int) -> Product:
        """Décrémente le stock (vente directe, sans réservation)."""
        product = self._get_product(product_id, lock=True)
        if (product.quantity_on_hand or 0) < quantity:
            raise UnavailableError(f"Insufficient stock for product {product.name}")
        product.quantity_on_hand -= quantity
        self.db.flush()
        return product

    def restore_stock(self, product_id: str, quantity: int) -> Product:
        product = self._get_product(product_id, lock=True)
        product.quantity_on_hand = (product.quantity_on_hand or 0) + quantity
        self.db.flush()
        return product
