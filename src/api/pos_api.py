"""
Local HTTP API over the cloud sync manager
"""
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from database.models import BillCreate, ProductCreate, ProductUpdate
from scanner.barcode_validator import BarcodeValidationError, validate_barcode
from sync.cloud_sync import CloudSyncManager, ProductNotFoundError

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class ScanRequest(BaseModel):
    barcode: str


class SaleRequest(BaseModel):
    quantity: int = Field(default=1, ge=1)


def _timestamp():
    return datetime.now(timezone.utc).isoformat()


def create_app(manager: CloudSyncManager, min_length: int = 8, max_length: int = 20) -> FastAPI:
    """
    Build the API around an already constructed sync manager

    Args:
        manager: Sync manager owned by the caller (its lifecycle is not managed here)
        min_length: Minimum barcode length accepted by /api/scan
        max_length: Maximum barcode length accepted by /api/scan
    """
    app = FastAPI(title="POS Sync API", version="1.0.0")
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"API error: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": f"Internal server error: {str(e)}", "timestamp": _timestamp()},
            )
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request: {request.method} {request.url} took {process_time:.3f}s")
        return response

    @app.exception_handler(ProductNotFoundError)
    async def product_not_found(request: Request, exc: ProductNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "timestamp": _timestamp()}

    @app.get("/api/status")
    async def sync_status():
        return manager.get_status().to_dict()

    @app.post("/api/sync")
    async def force_sync():
        completed = await manager.force_sync()
        return {"completed": completed, "status": manager.get_status().to_dict()}

    # Products

    @app.get("/api/products")
    async def list_products():
        return manager.get_products()

    @app.post("/api/products", status_code=201)
    async def create_product(product: ProductCreate):
        return await manager.create_product(product)

    @app.get("/api/products/barcode/{barcode}")
    async def get_product_by_barcode(barcode: str):
        product = manager.get_product_by_barcode(barcode)
        if product is None:
            raise HTTPException(status_code=404, detail=f"No product with barcode {barcode}")
        return product

    @app.put("/api/products/{product_id}")
    async def update_product(product_id: str, updates: ProductUpdate):
        return await manager.update_product(product_id, updates)

    @app.delete("/api/products/{product_id}", status_code=204)
    async def delete_product(product_id: str):
        await manager.delete_product(product_id)

    @app.post("/api/products/{product_id}/sale")
    async def record_sale(product_id: str, sale: SaleRequest):
        return await manager.record_sale(product_id, sale.quantity)

    @app.post("/api/scan")
    async def scan_barcode(request: ScanRequest):
        """Validate a scanned barcode and look it up in the local catalog"""
        try:
            barcode = validate_barcode(request.barcode, min_length, max_length)
        except BarcodeValidationError as e:
            raise HTTPException(status_code=422, detail={"error": str(e), "kind": e.kind})

        product = manager.get_product_by_barcode(barcode)
        if product is None:
            raise HTTPException(status_code=404, detail=f"No product with barcode {barcode}")
        return {"barcode": barcode, "product": product}

    # Bills

    @app.get("/api/bills")
    async def list_bills():
        return manager.get_bills()

    @app.post("/api/bills", status_code=201)
    async def create_bill(bill: BillCreate):
        return await manager.create_bill(bill)

    @app.get("/api/stock-summary")
    async def stock_summary():
        return manager.local.get_stock_summary()

    # Diagnostics

    @app.get("/api/debug")
    async def debug_info():
        info = manager.local.get_debug_info()
        info["status"] = manager.get_status().to_dict()
        return info

    @app.delete("/api/local-data", status_code=204)
    async def clear_local_data():
        """Wipe the local cache; the next full sync downloads the remote collections again"""
        manager.local.clear_all_data()

    return app
