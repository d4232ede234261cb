from fastapi import APIRouter

from md2pdf.api.v1.endpoints import engines, generate, health

v1_router = APIRouter()
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(engines.router, tags=["engines"])
v1_router.include_router(generate.router, tags=["generate"])
