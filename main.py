# main.py - Serveur API location / vente (devis, commandes, factures)
import uvicorn
import logging
import sys
from datetime import datetime
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.errors import DomainError
from db.session import init_db
from routes.routes_products import router as products_router
from routes.routes_quotations import router as quotations_router
from routes.routes_orders import router as orders_router
from routes.routes_sale_orders import router as sale_orders_router
from routes.routes_invoices import router as invoices_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie de l'application"""
    try:
        logger.info("=" * 50)
        logger.info("DEMARRAGE DU SERVEUR LOCATION / VENTE")
        logger.info("=" * 50)
        init_db()
        logger.info("Base de données initialisée")
        logger.info("   Documentation: http://localhost:8000/docs")
        yield
    except Exception as e:
        logger.error(f"Erreur critique au démarrage: {e}")
        raise
    finally:
        logger.info("Arrêt du serveur")


app = FastAPI(
    title="Rental Marketplace API",
    description="Devis, négociation, commandes de location et de vente, facturation",
    version="1.0.0",
    lifespan=lifespan
)


# === Gestionnaires d'erreurs : enveloppe {success, message, error} ===

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.status_code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "error": "ValidationError"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Erreur inattendue sur {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Erreur interne du serveur", "error": "InternalError"},
    )


app.include_router(products_router, prefix="/api/products", tags=["Produits"])
app.include_router(quotations_router, prefix="/api/quotations", tags=["Devis"])
app.include_router(orders_router, prefix="/api/orders", tags=["Commandes"])
app.include_router(sale_orders_router, prefix="/api/sale-orders", tags=["Commandes de vente"])
app.include_router(invoices_router, prefix="/api/invoices", tags=["Factures"])


@app.get("/api/health")
async def health_check():
    """Endpoint de contrôle de santé"""
    return {
        "success": True,
        "service": "Rental Marketplace API",
        "status": "active",
        "timestamp": datetime.now().isoformat(),
    }


# Point d'entrée de l'application
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_config=None)
