from fastapi import APIRouter
from servicedesk.api.v1 import tickets, purchase_orders, notifications, sse

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(sse.router, prefix="/sse", tags=["sse"])
