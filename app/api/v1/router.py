from fastapi import APIRouter

from app.api.v1 import experiments, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(experiments.router, prefix="/ab-tests", tags=["ab-tests"])
