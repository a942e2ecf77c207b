# db/models.py

import uuid
from datetime import datetime

from sqlalchemy.orm import declarative_base, declared_attr, relationship
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Boolean, ForeignKey, JSON

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


# Table Produit (catalogue externe, projeté)
class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    category = Column(String(100))
    vendor_id = Column(String(36), ForeignKey("users.id"), index=True)

    # Grille tarifaire location
    hourly_rate = Column(Float, default=0.0)
    daily_rate = Column(Float, default=0.0)
    weekly_rate = Column(Float, default=0.0)
    sale_price = Column(Float, default=0.0)

    quantity_on_hand = Column(Integer, default=0, nullable=False)
    tax_rate = Column(Float, nullable=True)  # surcharge optionnelle du taux catégorie
    is_rentable = Column(Boolean, default=True)
    is_sellable = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    reservations = relationship(
        "Reservation",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="Reservation.start_date",
    )


# Table Réservation (blocage de quantité sur une période)
class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    order_id = Column(String(36), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", back_populates="reservations")


# Compteurs atomiques par type de document (QT, ORD, SO, INV)
class DocumentSequence(Base):
    __tablename__ = "document_sequences"

    name = Column(String(20), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class LineItemMixin:
    """Colonnes communes aux lignes de devis, commandes et factures."""

    id = Column(String(36), primary_key=True, default=new_id)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    rental_start_date = Column(DateTime)
    rental_end_date = Column(DateTime)
    duration_value = Column(Integer, default=1)
    duration_unit = Column(String(10))  # hour | day | week
    price_per_unit = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, default=18.0)
    category = Column(String(100))  # dénormalisée à la création

    @declared_attr
    def product_id(cls):
        return Column(String(36), ForeignKey("products.id"), nullable=False)

    @declared_attr
    def product(cls):
        return relationship("Product")


# Table Devis
class Quotation(Base):
    __tablename__ = "quotations"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_number = Column(String(20), unique=True, nullable=False)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("users.id"), index=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, default=18.0)  # taux moyen pondéré (affichage)
    tax_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, default=0.0)
    discount_type = Column(String(20))  # coupon | promo | loyalty
    total_amount = Column(Float, nullable=False, default=0.0)

    status = Column(String(20), default="draft", nullable=False, index=True)
    vendor_notes = Column(Text)
    vendor_adjusted_pricing = Column(JSON, default=list)
    approved_at = Column(DateTime)
    approved_by = Column(String(36))
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)
    cancelled_at = Column(DateTime)
    converted_to_order = Column(String(36))
    notes = Column(Text)
    valid_until = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "QuotationItem",
        cascade="all, delete-orphan",
        order_by="QuotationItem.position",
    )
    counter_offers = relationship(
        "CounterOffer",
        cascade="all, delete-orphan",
        order_by="CounterOffer.position",
    )


class QuotationItem(LineItemMixin, Base):
    __tablename__ = "quotation_items"

    quotation_id = Column(String(36), ForeignKey("quotations.id"), nullable=False, index=True)


# Historique des contre-offres (append-only)
class CounterOffer(Base):
    __tablename__ = "counter_offers"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_id = Column(String(36), ForeignKey("quotations.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    offered_by = Column(String(36), nullable=False)
    offered_by_role = Column(String(20), nullable=False)
    items = Column(JSON, default=list)  # [{product_id, price_per_unit, total_price}]
    subtotal = Column(Float)
    tax_amount = Column(Float)
    total_amount = Column(Float)
    notes = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)


# Table Commande de location
class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    order_number = Column(String(20), unique=True, nullable=False)
    quotation_id = Column(String(36), ForeignKey("quotations.id"), index=True)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("users.id"), index=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, default=18.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    security_deposit = Column(Float, default=0.0)
    late_return_fee = Column(Float, default=0.0)  # posé par le flux de retour (non implémenté), reporté sur la facture
    shipping_address = Column(JSON)
    notes = Column(Text)

    status = Column(String(20), default="confirmed", nullable=False, index=True)
    payment_status = Column(String(20), default="pending", nullable=False)
    pickup_date = Column(DateTime)
    cancelled_at = Column(DateTime)

    # Projection SaleOrder miroir : pending | created | failed
    mirror_status = Column(String(20), default="pending", nullable=False)
    mirror_error = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )


class OrderItem(LineItemMixin, Base):
    __tablename__ = "order_items"

    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(20), default="pending")  # pending | with_customer | returned


# Table Commande de vente (autonome ou miroir d'une location)
class SaleOrder(Base):
    __tablename__ = "sale_orders"

    id = Column(String(36), primary_key=True, default=new_id)
    order_number = Column(String(20), unique=True, nullable=False)
    linked_order_id = Column(String(36), ForeignKey("orders.id"), unique=True, index=True)
    quotation_id = Column(String(36), ForeignKey("quotations.id"))
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, default=18.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    shipping_amount = Column(Float, default=0.0)
    discount_amount = Column(Float, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)

    status = Column(String(20), default="draft", nullable=False, index=True)
    payment_status = Column(String(20), default="pending", nullable=False)
    payment_method = Column(String(20), default="cash")
    shipping_address = Column(JSON)
    notes = Column(Text)
    vendor_notes = Column(Text)
    customer_notes = Column(Text)
    rejection_reason = Column(Text)
    refund_amount = Column(Float, default=0.0)
    refund_reason = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    confirmed_at = Column(DateTime)
    shipped_at = Column(DateTime)
    delivered_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    items = relationship(
        "SaleOrderItem",
        cascade="all, delete-orphan",
        order_by="SaleOrderItem.position",
    )

    def can_be_cancelled(self) -> bool:
        return self.status in ("draft", "confirmed", "processing")

    def can_be_refunded(self) -> bool:
        return self.status == "delivered" and self.payment_status == "paid"


class SaleOrderItem(LineItemMixin, Base):
    __tablename__ = "sale_order_items"

    sale_order_id = Column(String(36), ForeignKey("sale_orders.id"), nullable=False, index=True)
    status = Column(String(20), default="pending")
    delivery_date = Column(DateTime)


# Table Facture
class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_number = Column(String(20), unique=True, nullable=False)
    order_id = Column(String(36), unique=True, nullable=False)  # une facture par commande
    order_type = Column(String(10), nullable=False)  # rental | sale
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, default=0.0)
    discount_type = Column(String(20), default="fixed")  # fixed | percentage
    tax_rate = Column(Float, default=18.0)
    cgst = Column(Float, default=0.0)
    sgst = Column(Float, default=0.0)
    igst = Column(Float, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    security_deposit = Column(Float, default=0.0)
    late_return_fee = Column(Float, default=0.0)
    paid_amount = Column(Float, default=0.0, nullable=False)
    balance_amount = Column(Float, nullable=False, default=0.0)
    payment_type = Column(String(20), default="full")  # full | partial | deposit | advance
    status = Column(String(20), default="draft", nullable=False, index=True)

    due_date = Column(DateTime)
    invoice_date = Column(DateTime, default=datetime.utcnow)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "InvoiceItem",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )
    payments = relationship(
        "Payment",
        cascade="all, delete-orphan",
        order_by="Payment.position",
    )


class InvoiceItem(LineItemMixin, Base):
    __tablename__ = "invoice_items"

    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    product_name = Column(String(200))
    rental_period = Column(String(50), default="N/A")


# Paiements (append-only)
class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    amount = Column(Float, nullable=False)
    method = Column(String(20))
    transaction_id = Column(String(100))
    date = Column(DateTime, default=datetime.utcnow)
    notes = Column(Text)


# Enlèvement (effet de bord du passage picked_up)
class Pickup(Base):
    __tablename__ = "pickups"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = Column(String(36), nullable=False)
    vendor_id = Column(String(36))
    items = Column(JSON, default=list)  # [{product_id, quantity, condition}]
    scheduled_date = Column(DateTime)
    pickup_address = Column(JSON)
    status = Column(String(20), default="completed")
    created_at = Column(DateTime, default=datetime.utcnow)
