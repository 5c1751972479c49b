"""
Emergency dispatch endpoints.

A dispatch request needs a known emergency type and a location with
lat/lng. The response lists the assigned responders with their ETAs;
when nobody is available the incident is escalated and the response
says so with success=false (HTTP 200, since the incident was recorded).
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import Field

from ...core.dispatch.models import EMERGENCY_TYPES, IncidentNotFoundError, InvalidIncidentError
from ...infrastructure.firebase import FirebaseError
from ..dependencies import AuthenticatedUser, DispatchServiceDep
from .recording import CamelModel

logger = logging.getLogger(__name__)

router = APIRouter()


class DispatchRequest(CamelModel):
    type: Optional[str] = Field(default=None, description="One of the emergency types")
    location: Optional[dict[str, Any]] = Field(default=None, description="lat, lng and description")
    description: Optional[str] = None
    reported_by: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusUpdateRequest(CamelModel):
    status: str = Field(description="DISPATCHING, RESPONDING, RESOLVED or CANCELLED")


class AssignmentUpdateRequest(CamelModel):
    responder_id: str
    status: str = Field(description="DISPATCHED, EN_ROUTE or ARRIVED")


def _not_found(e: IncidentNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _storage_failed(e: FirebaseError) -> HTTPException:
    logger.error("Incident storage failed", extra={"error": str(e)})
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.get("/types", summary="Emergency types and their response profiles")
async def list_emergency_types(_api_key: AuthenticatedUser) -> dict[str, Any]:
    return {"types": {name: t.to_dict() for name, t in EMERGENCY_TYPES.items()}}


@router.post("/dispatch", summary="Dispatch responders to an incident")
async def dispatch_incident(
    request: DispatchRequest,
    service: DispatchServiceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    report = request.model_dump(by_alias=True, exclude_none=True)
    try:
        return await service.dispatch(report)
    except InvalidIncidentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except FirebaseError as e:
        raise _storage_failed(e)


@router.get("/incidents/{incident_id}", summary="Incident details")
async def get_incident(
    incident_id: str,
    service: DispatchServiceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    try:
        return await service.get_incident(incident_id)
    except IncidentNotFoundError as e:
        raise _not_found(e)


@router.post("/incidents/{incident_id}/status", summary="Change an incident's status")
async def update_incident_status(
    incident_id: str,
    request: StatusUpdateRequest,
    service: DispatchServiceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    try:
        incident = await service.update_status(incident_id, request.status.upper())
    except IncidentNotFoundError as e:
        raise _not_found(e)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown incident status: {request.status}",
        )
    return {"success": True, "incident": incident}


@router.post("/incidents/{incident_id}/assignments", summary="Record a responder's progress")
async def update_assignment(
    incident_id: str,
    request: AssignmentUpdateRequest,
    service: DispatchServiceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    try:
        incident = await service.update_assignment_status(
            incident_id,
            request.responder_id,
            request.status.upper(),
        )
    except IncidentNotFoundError as e:
        raise _not_found(e)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown assignment status: {request.status}",
        )
    return {"success": True, "incident": incident}
