"""
Viewing request API endpoints.

Manual booking by tenants, dashboards for both sides, and the landlord's
approve / decline / propose / close decisions.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional
import logging

from viewing_scheduler.api.deps import get_checker, get_store
from viewing_scheduler.core.errors import InvalidTransition, NotFoundError, PersistenceError, SlotConflictError
from viewing_scheduler.core.logging import with_context
from viewing_scheduler.schemas.viewing import (
    ViewingRequestCreate,
    ViewingRequestResponse,
    ViewingStatusUpdate,
)
from viewing_scheduler.services.availability import AvailabilityChecker
from viewing_scheduler.services.viewing_store import ViewingRequestStore

router = APIRouter(
    prefix="/api/viewing-requests",
    tags=["viewing-requests"]
)

logger = logging.getLogger(__name__)


@router.post("", response_model=ViewingRequestResponse, status_code=status.HTTP_201_CREATED)
def create_viewing_request(
    payload: ViewingRequestCreate,
    store: ViewingRequestStore = Depends(get_store),
    checker: AvailabilityChecker = Depends(get_checker),
):
    """
    Create a Pending viewing request from the booking form.

    Raises:
        404: Unknown listing
        409: The landlord already has a viewing in that slot
    """
    log = with_context(logger, landlord_id=payload.landlord_id)
    log.info(f"Booking form request for property {payload.property_id}")

    try:
        viewing = store.create(
            payload.property_id,
            payload.tenant_id,
            payload.landlord_id,
            payload.requested_date_time,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SlotConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    checker.invalidate(payload.landlord_id)
    return ViewingRequestResponse.model_validate(viewing)


@router.get("", response_model=List[ViewingRequestResponse])
def list_viewing_requests(
    landlord_id: Optional[str] = Query(default=None, alias="landlordId"),
    tenant_id: Optional[str] = Query(default=None, alias="tenantId"),
    store: ViewingRequestStore = Depends(get_store),
):
    """
    Dashboard listing, newest first.

    Exactly one of landlordId or tenantId is required.
    """
    if bool(landlord_id) == bool(tenant_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide exactly one of landlordId or tenantId"
        )

    if landlord_id:
        rows = store.list_for_landlord(landlord_id)
    else:
        rows = store.list_for_tenant(tenant_id)
    return [ViewingRequestResponse.model_validate(row) for row in rows]


@router.get("/approved", response_model=List[ViewingRequestResponse])
def list_approved_viewings(
    user_id: str = Query(..., alias="userId"),
    role: str = Query(...),
    store: ViewingRequestStore = Depends(get_store),
):
    """Approved viewings for a calendar, soonest first."""
    try:
        rows = store.list_approved(user_id, role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [ViewingRequestResponse.model_validate(row) for row in rows]


@router.get("/{request_id}", response_model=ViewingRequestResponse)
def get_viewing_request(request_id: int, store: ViewingRequestStore = Depends(get_store)):
    try:
        viewing = store.get(request_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ViewingRequestResponse.model_validate(viewing)


@router.patch("/{request_id}/status", response_model=ViewingRequestResponse)
def update_viewing_status(
    request_id: int,
    payload: ViewingStatusUpdate,
    store: ViewingRequestStore = Depends(get_store),
    checker: AvailabilityChecker = Depends(get_checker),
):
    """
    Apply a landlord decision to a viewing request.

    Raises:
        404: Unknown request
        409: The state machine doesn't allow this change, or an accepted
             proposal collides with another booking
    """
    try:
        viewing = store.set_status(request_id, payload.status, payload.proposed_date_time)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidTransition, SlotConflictError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    checker.invalidate(viewing.landlord_id)
    return ViewingRequestResponse.model_validate(viewing)
