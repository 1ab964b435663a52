from fastapi import APIRouter

from erp_receiving.api.v1.endpoints import (
    grn,
    approvals,
    vendor_returns,
    purchase_orders,
    notifications,
)

api_router = APIRouter()

api_router.include_router(
    purchase_orders.router,
    prefix="/purchase-orders",
    tags=["Purchase Orders"]
)

api_router.include_router(
    grn.router,
    prefix="/grn",
    tags=["Goods Receipt Notes"]
)

api_router.include_router(
    approvals.router,
    prefix="/approvals",
    tags=["Approvals"]
)

api_router.include_router(
    vendor_returns.router,
    prefix="/vendor-returns",
    tags=["Vendor Returns"]
)

api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"]
)
