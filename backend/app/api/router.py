"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import purchases, bookings, transactions, organizations

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(purchases.router)
api_router.include_router(bookings.router)
api_router.include_router(transactions.router)
api_router.include_router(organizations.router)
