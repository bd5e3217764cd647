"""API routers for the minerpay backend."""
from fastapi import APIRouter

from . import checkout, health, payees, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(checkout.router)
    api_router.include_router(payees.router)
    api_router.include_router(webhooks.router)
    return api_router
