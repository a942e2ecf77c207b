# routes/routes_quotations.py - Endpoints devis (création, négociation, conversion)

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.security import Principal, get_current_principal
from db.session import get_db
from models.schemas import (
    ApproveRequest,
    ConvertRequest,
    CounterOfferRequest,
    OrderOut,
    QuotationCreate,
    QuotationOut,
    QuotationUpdate,
    RejectRequest,
)
from services.quotation_workflow import QuotationWorkflow

router = APIRouter()


def _payload(quotation, message: Optional[str] = None) -> dict:
    body = {"success": True, "quotation": QuotationOut.model_validate(quotation)}
    if message:
        body["message"] = message
    return body


@router.get("")
def list_quotations(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    quotations = QuotationWorkflow(db).list(actor, status=status_filter)
    return {
        "success": True,
        "count": len(quotations),
        "quotations": [QuotationOut.model_validate(q) for q in quotations],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_quotation(
    request: QuotationCreate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    quotation = QuotationWorkflow(db).create(
        actor,
        request.items,
        notes=request.notes,
        discount_amount=request.discount_amount,
        discount_type=request.discount_type,
    )
    return _payload(quotation, "Quotation created successfully")


@router.get("/{quotation_id}")
def get_quotation(
    quotation_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(QuotationWorkflow(db).get(actor, quotation_id))


@router.put("/{quotation_id}")
def update_quotation(
    quotation_id: str,
    request: QuotationUpdate,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    quotation = QuotationWorkflow(db).update(
        actor,
        quotation_id,
        notes=request.notes,
        items=request.items,
        discount_amount=request.discount_amount,
        discount_type=request.discount_type,
    )
    return _payload(quotation, "Quotation updated successfully")


@router.delete("/{quotation_id}")
def delete_quotation(
    quotation_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    QuotationWorkflow(db).delete(actor, quotation_id)
    return {"success": True, "message": "Quotation deleted successfully"}


@router.put("/{quotation_id}/submit")
def submit_quotation(
    quotation_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(QuotationWorkflow(db).submit(actor, quotation_id), "Quotation submitted successfully")


@router.put("/{quotation_id}/approve")
def approve_quotation(
    quotation_id: str,
    request: Optional[ApproveRequest] = None,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    request = request or ApproveRequest()
    quotation = QuotationWorkflow(db).approve(
        actor, quotation_id, vendor_notes=request.vendor_notes, adjusted_pricing=request.adjusted_pricing
    )
    return _payload(quotation, "Quotation approved successfully")


@router.put("/{quotation_id}/reject")
def reject_quotation(
    quotation_id: str,
    request: RejectRequest,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    quotation = QuotationWorkflow(db).reject(actor, quotation_id, request.rejection_reason)
    return _payload(quotation, "Quotation rejected")


@router.put("/{quotation_id}/cancel")
def cancel_quotation(
    quotation_id: str,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _payload(QuotationWorkflow(db).cancel(actor, quotation_id), "Quotation cancelled")


@router.post("/{quotation_id}/counter-offer")
def counter_offer(
    quotation_id: str,
    request: CounterOfferRequest,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    quotation = QuotationWorkflow(db).counter_offer(actor, quotation_id, request.items, notes=request.notes)
    return _payload(quotation, "Counter offer submitted successfully")


@router.post("/{quotation_id}/convert-to-order", status_code=status.HTTP_201_CREATED)
def convert_to_order(
    quotation_id: str,
    request: Optional[ConvertRequest] = None,
    actor: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    request = request or ConvertRequest()
    order = QuotationWorkflow(db).convert_to_order(
        actor,
        quotation_id,
        shipping_address=request.shipping_address,
        security_deposit=request.security_deposit,
        notes=request.notes,
    )
    return {
        "success": True,
        "message": "Quotation converted to order successfully",
        "order": OrderOut.model_validate(order),
    }
