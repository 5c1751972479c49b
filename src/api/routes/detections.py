"""
Detections written to Firestore by edge devices, newest first.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from ...infrastructure.firebase import FirebaseError
from ..dependencies import AuthenticatedUser, DetectionRepositoryDep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/detections", summary="All detections sorted by timestamp descending")
async def list_detections(
    repository: DetectionRepositoryDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    try:
        detections = await repository.list_detections()
    except FirebaseError as e:
        logger.error("Failed to fetch detections", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to fetch detections: {e}",
        )

    if not detections:
        message = "No detections found"
    else:
        message = f"Retrieved {len(detections)} detections (sorted by timestamp)"

    return {
        "success": True,
        "data": detections,
        "count": len(detections),
        "message": message,
    }
