"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from transit_ticketing.api.routes import tickets, users

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(users.router)
api_router.include_router(tickets.router)
