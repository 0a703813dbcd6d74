from fastapi import APIRouter

from tradeflow.api.routes import deals, documents, health, invites, notifications

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(deals.router)
api_router.include_router(documents.router)
api_router.include_router(invites.router)
api_router.include_router(notifications.router)
