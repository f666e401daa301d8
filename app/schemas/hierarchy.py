"""
Schemas de la jerarquía: suscripciones, organizaciones, complejos,
departamentos y clínicas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.organization import EntityStatus
from app.models.subscription import PlanType


class SubscriptionCreate(BaseModel):
    plan_type: PlanType
    max_complexes: int | None = Field(None, ge=0)
    max_clinics: int | None = Field(None, ge=0)
    max_staff: int | None = Field(None, ge=0)


class SubscriptionResponse(BaseModel):
    id: UUID
    plan_type: PlanType
    is_active: bool
    max_complexes: int | None = None
    max_clinics: int | None = None
    max_staff: int | None = None

    model_config = {"from_attributes": True}


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    subscription_id: UUID | None = None


class OrganizationResponse(BaseModel):
    id: UUID
    name: str
    subscription_id: UUID | None = None
    status: EntityStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class ComplexCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    organization_id: UUID | None = None
    subscription_id: UUID | None = None


class ComplexResponse(BaseModel):
    id: UUID
    name: str
    organization_id: UUID | None = None
    subscription_id: UUID | None = None
    status: EntityStatus
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None

    model_config = {"from_attributes": True}


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    complex_id: UUID | None = None


class DepartmentResponse(BaseModel):
    id: UUID
    name: str
    complex_id: UUID | None = None
    status: EntityStatus

    model_config = {"from_attributes": True}


class ClinicCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    organization_id: UUID | None = None
    complex_id: UUID | None = None
    department_id: UUID | None = None
    subscription_id: UUID | None = None
    session_duration: int = Field(30, ge=5, le=240)
    room_count: int = Field(1, ge=1, le=100)


class ClinicResponse(BaseModel):
    id: UUID
    name: str
    organization_id: UUID | None = None
    complex_id: UUID | None = None
    department_id: UUID | None = None
    subscription_id: UUID | None = None
    status: EntityStatus
    session_duration: int
    room_count: int
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None

    model_config = {"from_attributes": True}
