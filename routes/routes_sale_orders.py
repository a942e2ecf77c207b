# routes/routes_sale_orders.py - Endpoints commandes de vente

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.security import Principal, get_current_principal
from db.session import get_db
from models.schemas import (
    CancelRequest,
    PaymentStatusUpdate,
    RefundRequest,
    SaleOrderCreate,
    SaleOrderOut,
    StatusUpdate,
)
from services.order_workflow import SaleOrderWorkflow

router = APIRouter()


def _payload(sale_order, message: Optional[str] = None) -> dict:
    body = {"success": True, "sale_order": SaleOrderOut.model_validate(sale_order)}
    if message:
        body["message"] = message
    return body


@router.get("")
def list_sale_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_orders = SaleOrderWorkflow(db).list(actor, status=status_filter)
    return {
        "success": True,
        "count": len(sale_orders),
        "sale_orders": [SaleOrderOut.model_validate(s) for s in sale_orders],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_sale_order(
    request: SaleOrderCreate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_order = SaleOrderWorkflow(db).create_standalone(
        actor,
        request.items,
        customer_id=request.customer_id,
        shipping_amount=request.shipping_amount,
        discount_amount=request.discount_amount,
        shipping_address=request.shipping_address,
        payment_method=request.payment_method,
        notes=request.notes,
    )
    return _payload(sale_order, "Sale order created successfully")


@router.get("/{sale_order_id}")
def get_sale_order(
    sale_order_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(SaleOrderWorkflow(db).get(actor, sale_order_id))


@router.delete("/{sale_order_id}")
def delete_sale_order(
    sale_order_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    SaleOrderWorkflow(db).delete(actor, sale_order_id)
    return {"success": True, "message": "Sale order deleted successfully"}


@router.put("/{sale_order_id}/status")
def update_sale_order_status(
    sale_order_id: str,
    request: StatusUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_order = SaleOrderWorkflow(db).update_status(actor, sale_order_id, request.status, reason=request.reason)
    return _payload(sale_order, "Sale order status updated successfully")


@router.put("/{sale_order_id}/cancel")
def cancel_sale_order(
    sale_order_id: str,
    request: CancelRequest,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_order = SaleOrderWorkflow(db).cancel(actor, sale_order_id, request.reason)
    return _payload(sale_order, "Sale order cancelled successfully")


@router.put("/{sale_order_id}/payment")
def update_sale_order_payment(
    sale_order_id: str,
    request: PaymentStatusUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_order = SaleOrderWorkflow(db).update_payment_status(actor, sale_order_id, request.payment_status)
    return _payload(sale_order, "Payment status updated successfully")


@router.put("/{sale_order_id}/refund")
def refund_sale_order(
    sale_order_id: str,
    request: RefundRequest,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    sale_order = SaleOrderWorkflow(db).refund(actor, sale_order_id, amount=request.amount, reason=request.reason)
    return _payload(sale_order, "Sale order refunded successfully")
