"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter

from atlas.api.v1.endpoints import calls, lead_gen, meetings, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router)
api_router.include_router(calls.router)
api_router.include_router(lead_gen.router)
api_router.include_router(meetings.router)
