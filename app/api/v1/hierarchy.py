"""
Endpoints de alta de la jerarquía: suscripciones, organizaciones,
complejos, departamentos y clínicas.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.hierarchy import (
    ClinicCreate,
    ClinicResponse,
    ComplexCreate,
    ComplexResponse,
    DepartmentCreate,
    DepartmentResponse,
    OrganizationCreate,
    OrganizationResponse,
    SubscriptionCreate,
    SubscriptionResponse,
)
from app.services import hierarchy_service

router = APIRouter()


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(data: SubscriptionCreate, db: AsyncSession = Depends(get_db)):
    return await hierarchy_service.create_subscription(db, data)


@router.post("/organizations", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(data: OrganizationCreate, db: AsyncSession = Depends(get_db)):
    return await hierarchy_service.create_organization(db, data)


@router.post("/complexes", response_model=ComplexResponse, status_code=status.HTTP_201_CREATED)
async def create_complex(data: ComplexCreate, db: AsyncSession = Depends(get_db)):
    """Crea un complejo. Respeta el límite de complejos del plan."""
    return await hierarchy_service.create_complex(db, data)


@router.get("/complexes/{complex_id}", response_model=ComplexResponse)
async def get_complex(complex_id: UUID, db: AsyncSession = Depends(get_db)):
    return await hierarchy_service.get_complex(db, complex_id)


@router.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(data: DepartmentCreate, db: AsyncSession = Depends(get_db)):
    return await hierarchy_service.create_department(db, data)


@router.post("/clinics", response_model=ClinicResponse, status_code=status.HTTP_201_CREATED)
async def create_clinic(data: ClinicCreate, db: AsyncSession = Depends(get_db)):
    """Crea una clínica. Respeta el límite de clínicas del plan del complejo."""
    return await hierarchy_service.create_clinic(db, data)


@router.get("/clinics/{clinic_id}", response_model=ClinicResponse)
async def get_clinic(clinic_id: UUID, db: AsyncSession = Depends(get_db)):
    return await hierarchy_service.get_clinic(db, clinic_id)
