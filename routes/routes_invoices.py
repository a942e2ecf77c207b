# routes/routes_invoices.py - Endpoints factures et paiements

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.security import Principal, get_current_principal
from db.models import Invoice
from db.session import get_db
from models.schemas import InvoiceCreate, InvoiceOut, PaymentIn, StatusUpdate
from services.invoice_workflow import InvoiceWorkflow, effective_status

router = APIRouter()


def serialize_invoice(invoice: Invoice) -> InvoiceOut:
    """Réponse facture avec le statut effectif (overdue calculé à la lecture)."""
    out = InvoiceOut.model_validate(invoice)
    out.effective_status = effective_status(invoice)
    return out


def _payload(invoice: Invoice, message: Optional[str] = None) -> dict:
    body = {"success": True, "invoice": serialize_invoice(invoice)}
    if message:
        body["message"] = message
    return body


@router.get("")
def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoices = InvoiceWorkflow(db).list(actor, status=status_filter)
    return {"success": True, "count": len(invoices), "invoices": [serialize_invoice(i) for i in invoices]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_invoice(
    request: InvoiceCreate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = InvoiceWorkflow(db).create_from_order(
        actor,
        request.order_id,
        order_type=request.order_type,
        due_date=request.due_date,
        discount=request.discount,
        discount_type=request.discount_type,
        payment_type=request.payment_type,
        initial_payment=request.initial_payment,
        payment_method=request.payment_method,
        notes=request.notes,
    )
    return _payload(invoice, "Invoice created successfully")


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(InvoiceWorkflow(db).get(actor, invoice_id))


@router.post("/{invoice_id}/payment")
def add_payment(
    invoice_id: str,
    request: PaymentIn,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = InvoiceWorkflow(db).add_payment(
        actor,
        invoice_id,
        request.amount,
        method=request.method,
        transaction_id=request.transaction_id,
        notes=request.notes,
    )
    return _payload(invoice, "Payment added successfully")


@router.put("/{invoice_id}/status")
def update_invoice_status(
    invoice_id: str,
    request: StatusUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = InvoiceWorkflow(db).update_status(actor, invoice_id, request.status)
    return _payload(invoice, "Invoice status updated successfully")
