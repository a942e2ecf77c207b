"""
Schémas d'échange API (requêtes et réponses)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Les dates sont stockées en UTC sans fuseau
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# === Requêtes devis ===

class QuotationItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., description="Quantité (>= 1)")
    rental_start_date: Optional[datetime] = None
    rental_end_date: Optional[datetime] = None

    @field_validator("rental_start_date", "rental_end_date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class QuotationCreate(BaseModel):
    items: List[QuotationItemIn] = Field(default_factory=list)
    notes: Optional[str] = None
    discount_amount: float = 0.0
    discount_type: Optional[str] = Field(None, description="coupon | promo | loyalty")


class QuotationUpdate(BaseModel):
    items: Optional[List[QuotationItemIn]] = None
    notes: Optional[str] = None
    discount_amount: Optional[float] = None
    discount_type: Optional[str] = None


class CounterOfferItemIn(BaseModel):
    product_id: str
    adjusted_price: float


class CounterOfferRequest(BaseModel):
    items: List[CounterOfferItemIn] = Field(default_factory=list)
    notes: str = ""


class ApproveRequest(BaseModel):
    vendor_notes: Optional[str] = None
    adjusted_pricing: Optional[List[Dict[str, Any]]] = None


class RejectRequest(BaseModel):
    rejection_reason: Optional[str] = None


class ConvertRequest(BaseModel):
    shipping_address: Optional[Dict[str, Any]] = None
    security_deposit: float = 0.0
    notes: Optional[str] = None


# === Requêtes commandes ===

class OrderCreate(ConvertRequest):
    quotation_id: str


class StatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: str


class SaleOrderItemIn(BaseModel):
    product_id: str
    quantity: int


class SaleOrderCreate(BaseModel):
    customer_id: Optional[str] = None
    items: List[SaleOrderItemIn] = Field(default_factory=list)
    shipping_amount: float = 0.0
    discount_amount: float = 0.0
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: str = Field("cash", max_length=20)
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    amount: Optional[float] = None
    reason: Optional[str] = None


# === Requêtes factures ===

class InvoiceCreate(BaseModel):
    order_id: str
    order_type: Optional[str] = Field(None, description="rental | sale (résolu automatiquement si absent)")
    due_date: Optional[datetime] = None
    discount: float = 0.0
    discount_type: str = "fixed"
    payment_type: str = "full"
    initial_payment: float = 0.0
    payment_method: str = Field("cash", max_length=20)
    notes: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class PaymentIn(BaseModel):
    amount: float
    method: str = Field("cash", max_length=20)
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


# === Réponses ===

class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    quantity: int
    rental_start_date: Optional[datetime] = None
    rental_end_date: Optional[datetime] = None
    duration_value: Optional[int] = None
    duration_unit: Optional[str] = None
    price_per_unit: float
    total_price: float
    tax_rate: Optional[float] = None
    category: Optional[str] = None


class CounterOfferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    offered_by: str
    offered_by_role: str
    items: List[Dict[str, Any]] = Field(default_factory=list)
    subtotal: Optional[float] = None
    tax_amount: Optional[float] = None
    total_amount: Optional[float] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class QuotationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quotation_number: str
    customer_id: str
    vendor_id: Optional[str] = None
    items: List[LineItemOut] = Field(default_factory=list)
    subtotal: float
    tax_rate: Optional[float] = None
    tax_amount: float
    discount_amount: Optional[float] = None
    discount_type: Optional[str] = None
    total_amount: float
    status: str
    counter_offers: List[CounterOfferOut] = Field(default_factory=list)
    vendor_notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    converted_to_order: Optional[str] = None
    notes: Optional[str] = None
    valid_until: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderItemOut(LineItemOut):
    status: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    quotation_id: Optional[str] = None
    customer_id: str
    vendor_id: Optional[str] = None
    items: List[OrderItemOut] = Field(default_factory=list)
    subtotal: float
    tax_rate: Optional[float] = None
    tax_amount: float
    discount_amount: Optional[float] = None
    total_amount: float
    security_deposit: Optional[float] = None
    shipping_address: Optional[Dict[str, Any]] = None
    status: str
    payment_status: str
    pickup_date: Optional[datetime] = None
    mirror_status: str
    created_at: Optional[datetime] = None


class SaleOrderItemOut(LineItemOut):
    status: Optional[str] = None
    delivery_date: Optional[datetime] = None


class SaleOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    linked_order_id: Optional[str] = None
    quotation_id: Optional[str] = None
    customer_id: str
    vendor_id: str
    items: List[SaleOrderItemOut] = Field(default_factory=list)
    subtotal: float
    tax_rate: Optional[float] = None
    tax_amount: float
    shipping_amount: Optional[float] = None
    discount_amount: Optional[float] = None
    total_amount: float
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    rejection_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class InvoiceItemOut(LineItemOut):
    product_name: Optional[str] = None
    rental_period: Optional[str] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: float
    method: Optional[str] = None
    transaction_id: Optional[str] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    order_id: str
    order_type: str
    customer_id: str
    vendor_id: str
    items: List[InvoiceItemOut] = Field(default_factory=list)
    subtotal: float
    discount: Optional[float] = None
    discount_type: Optional[str] = None
    tax_rate: Optional[float] = None
    cgst: float
    sgst: float
    igst: float
    tax_amount: float
    total_amount: float
    security_deposit: Optional[float] = None
    late_return_fee: Optional[float] = None
    paid_amount: float
    balance_amount: float
    payment_type: Optional[str] = None
    status: str
    effective_status: Optional[str] = Field(None, description="overdue calculé à la lecture")
    payments: List[PaymentOut] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    invoice_date: Optional[datetime] = None
    notes: Optional[str] = None
