"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from tutorbook.api.routes import auth, users, lessons, bookings, swaps, credits, templates

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(lessons.router)
api_router.include_router(bookings.router)
api_router.include_router(swaps.router)
api_router.include_router(credits.router)
api_router.include_router(templates.router)
