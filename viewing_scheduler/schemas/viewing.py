"""
Viewing request schemas.

These handle viewing appointment data validation for the HTTP layer.
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional
from datetime import datetime

from viewing_scheduler.db.models import ViewingStatus


class ViewingRequestCreate(BaseModel):
    """
    Schema for creating a viewing request by hand (tenant booking form).
    """

    property_id: int = Field(..., alias="propertyId")
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    landlord_id: str = Field(..., alias="landlordId", min_length=1)
    requested_date_time: datetime = Field(..., alias="requestedDateTime")

    model_config = ConfigDict(
        populate_by_name=True,
    )

    @field_validator("requested_date_time")
    @classmethod
    def must_be_absolute(cls, value: datetime) -> datetime:
        # A viewing time without an offset can't be compared to the calendar
        if value.tzinfo is None:
            raise ValueError("requestedDateTime must include a timezone offset")
        return value


class ViewingStatusUpdate(BaseModel):
    """
    Schema for a landlord's decision on a request.

    Pending can't be set from here; only the reschedule flow puts a request
    back to Pending.
    """

    status: ViewingStatus
    proposed_date_time: Optional[datetime] = Field(default=None, alias="proposedDateTime")

    model_config = ConfigDict(
        populate_by_name=True,
    )

    @field_validator("status")
    @classmethod
    def landlord_statuses_only(cls, value: ViewingStatus) -> ViewingStatus:
        if value == ViewingStatus.PENDING:
            raise ValueError("Invalid status.")
        return value

    @field_validator("proposed_date_time")
    @classmethod
    def proposal_must_be_absolute(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            raise ValueError("proposedDateTime must include a timezone offset")
        return value


class ViewingRequestResponse(BaseModel):
    """
    Schema for viewing request responses.

    What we return when querying viewing requests.
    """

    id: int
    property_id: int = Field(alias="propertyId")
    tenant_id: str = Field(alias="tenantId")
    landlord_id: str = Field(alias="landlordId")
    requested_date_time: datetime = Field(alias="requestedDateTime")
    proposed_date_time: Optional[datetime] = Field(default=None, alias="proposedDateTime")
    status: ViewingStatus

    # Timestamps
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,  # Allow reading from ORM objects
    )
