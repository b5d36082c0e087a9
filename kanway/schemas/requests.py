"""Pydantic schemas for service request API"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from kanway.db.models import PaymentMethod, RequestCategory, RequestStatus


class Location(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    zip_code: str | None = Field(None, max_length=20)
    latitude: float | None = Field(None, ge=-90.0, le=90.0)
    longitude: float | None = Field(None, ge=-180.0, le=180.0)


class BudgetRange(BaseModel):
    # Range checks live in RequestService so the first violation is reported
    min_cents: int
    max_cents: int
    currency: Literal["USD", "EUR", "GBP", "NAD"] = "USD"


class RequestCreate(BaseModel):
    title: str
    description: str
    category: str
    location: Location
    scheduled_date: datetime
    estimated_duration: int
    budget: BudgetRange
    payment_method: PaymentMethod = PaymentMethod.CASH


class RequestUpdate(BaseModel):
    """Fields a requester may change while the request is pending"""
    title: str | None = None
    description: str | None = None
    location: Location | None = None
    scheduled_date: datetime | None = None
    estimated_duration: int | None = None
    budget: BudgetRange | None = None


class StatusTransition(BaseModel):
    status: str


class ChooseProvider(BaseModel):
    provider_id: UUID


class ServiceRequestResponse(BaseModel):
    id: UUID
    requester_id: UUID
    assigned_provider_id: UUID | None
    title: str
    description: str
    category: RequestCategory
    location: Location
    scheduled_date: datetime
    estimated_duration: int
    budget_min_cents: int
    budget_max_cents: int
    budget_currency: str
    payment_method: PaymentMethod
    status: RequestStatus
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ServiceRequestListResponse(BaseModel):
    requests: list[ServiceRequestResponse]
    total: int
