from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.items import router as items_router
from backend.app.api.v1.endpoints.categories import router as categories_router
from backend.app.api.v1.endpoints.suppliers import router as suppliers_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from backend.app.api.v1.endpoints.receive_delivery import router as receive_delivery_router
from backend.app.api.v1.endpoints.stock_out import router as stock_out_router
from backend.app.api.v1.endpoints.stock_adjustments import router as stock_adjustments_router
from backend.app.api.v1.endpoints.batches import router as batches_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(items_router, tags=["items"])
router.include_router(categories_router, tags=["items"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(receive_delivery_router, tags=["receiving"])
router.include_router(stock_out_router, tags=["stock_out"])
router.include_router(stock_adjustments_router, tags=["stock_adjustments"])
router.include_router(batches_router, tags=["batches"])
