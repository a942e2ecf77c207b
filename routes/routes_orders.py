# routes/routes_orders.py - Endpoints commandes de location

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.security import Principal, get_current_principal
from db.session import get_db
from models.schemas import OrderCreate, OrderOut, PaymentStatusUpdate, StatusUpdate
from services.order_workflow import RentalOrderWorkflow
from services.quotation_workflow import QuotationWorkflow

router = APIRouter()


def _payload(order, message: Optional[str] = None) -> dict:
    body = {"success": True, "order": OrderOut.model_validate(order)}
    if message:
        body["message"] = message
    return body


@router.get("")
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    orders = RentalOrderWorkflow(db).list(actor, status=status_filter)
    return {"success": True, "count": len(orders), "orders": [OrderOut.model_validate(o) for o in orders]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    request: OrderCreate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Création depuis un devis approuvé (même chemin que convert-to-order)."""
    order = QuotationWorkflow(db).convert_to_order(
        actor,
        request.quotation_id,
        shipping_address=request.shipping_address,
        security_deposit=request.security_deposit,
        notes=request.notes,
    )
    return _payload(order, "Order created successfully")


@router.get("/stats")
def order_stats(
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {"success": True, "stats": RentalOrderWorkflow(db).stats(actor)}


@router.post("/reconcile-mirrors")
def reconcile_mirrors(
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    report = RentalOrderWorkflow(db).reconcile_sales_mirrors(actor)
    return {"success": True, "message": "Sales mirrors reconciled", "report": report}


@router.get("/{order_id}")
def get_order(
    order_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(RentalOrderWorkflow(db).get(actor, order_id))


@router.put("/{order_id}/status")
def update_order_status(
    order_id: str,
    request: StatusUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    order = RentalOrderWorkflow(db).update_status(actor, order_id, request.status)
    return _payload(order, "Order status updated successfully")


@router.put("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(RentalOrderWorkflow(db).cancel(actor, order_id), "Order cancelled successfully")


@router.put("/{order_id}/payment")
def update_order_payment(
    order_id: str,
    request: PaymentStatusUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    order = RentalOrderWorkflow(db).update_payment_status(actor, order_id, request.payment_status)
    return _payload(order, "Payment status updated successfully")
