"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.appointments import router as appointments_router
from app.api.v1.availability import router as availability_router
from app.api.v1.cascade import router as cascade_router
from app.api.v1.hierarchy import router as hierarchy_router
from app.api.v1.working_hours import router as working_hours_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    hierarchy_router,
    tags=["Jerarquía"],
)

api_v1_router.include_router(
    appointments_router,
    prefix="/appointments",
    tags=["Citas"],
)

api_v1_router.include_router(
    availability_router,
    prefix="/availability",
    tags=["Disponibilidad"],
)

api_v1_router.include_router(
    working_hours_router,
    prefix="/working-hours",
    tags=["Horarios de Atención"],
)

api_v1_router.include_router(
    cascade_router,
    prefix="/cascade",
    tags=["Cascadas"],
)
