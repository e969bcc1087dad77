from fastapi import APIRouter

from refund_agents.api.v1.endpoints import cases, chat, health, templates, wizard

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(cases.router, tags=["cases"])
api_router.include_router(templates.router, tags=["templates"])
api_router.include_router(wizard.router, prefix="/wizard", tags=["wizard"])
api_router.include_router(chat.router, tags=["chat"])
