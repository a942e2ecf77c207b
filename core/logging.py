# core/logging.py - Journal d'audit structuré JSON pour les transitions de documents

import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from pathlib import Path


class JSONFormatter(logging.Formatter):
    """
    Formatter pour logs structurés au format JSON.
    Facilite l'indexation dans des systèmes comme ELK, Datadog, etc.
    """

    AUDIT_FIELDS = (
        "event",
        "document_type",
        "document_id",
        "actor_id",
        "actor_role",
        "from_status",
        "to_status",
        "result",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Champs personnalisés (via extra={})
        for field_name in self.AUDIT_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)
        if hasattr(record, "extra_data"):
            log_data["extra_data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_audit_logger(name: str = "rental.workflow", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure un logger structuré pour les événements de workflow.

    Args:
        name: Nom du logger (hiérarchie: rental.workflow.quotation, ...)
        log_file: Chemin optionnel vers un fichier de logs dédié

    Returns:
        Logger configuré avec JSON formatter

    Usage:
        logger = setup_audit_logger("rental.workflow")
        logger.info(
            "Quotation approved",
            extra={"document_id": quotation.id, "actor_id": actor.id, "result": "success"}
        )
    """
    logger = logging.getLogger(name)

    # Éviter duplication si déjà configuré
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(JSONFormatter())
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def _build_audit_logger() -> logging.Logger:
    from core.config import get_settings
    return setup_audit_logger("rental.workflow", log_file=get_settings().log_file)


audit_logger = _build_audit_logger()


def log_workflow_event(
    event: str,
    document_type: str,
    document_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    result: str = "success",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Helper pour journaliser une transition de document de manière standardisée.

    Args:
        event: Type d'événement (quotation_submit, order_cancel, invoice_payment...)
        document_type: quotation | order | sale_order | invoice
        document_id: ID du document
        actor_id: ID de l'utilisateur à l'origine de l'action
        actor_role: customer | vendor | admin | system
        from_status / to_status: statuts avant/après transition
        result: success, failure, error
        extra_data: Données supplémentaires (montants, numéros...)

    Exemples:
        log_workflow_event("quotation_submit", "quotation", q.id, actor.id,
                           from_status="draft", to_status="pending")
        log_workflow_event("sales_mirror_create", "order", o.id, result="error")
    """
    log_context = {
        "event": event,
        "document_type": document_type,
        "document_id": document_id,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "from_status": from_status,
        "to_status": to_status,
        "result": result,
    }
    log_context = {k: v for k, v in log_context.items() if v is not None}
    if extra_data:
        log_context["extra_data"] = extra_data

    level = logging.INFO
    if result in ("failure", "rejected"):
        level = logging.WARNING
    elif result == "error":
        level = logging.ERROR

    audit_logger.log(level, f"Workflow event: {event}", extra=log_context)
