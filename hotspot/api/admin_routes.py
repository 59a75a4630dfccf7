"""
Admin API Routes - session management and operational views.

All routes require the X-Admin-Key header.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from structlog import get_logger

from hotspot.api.dependencies import get_admin_service, require_admin
from hotspot.exceptions import DependencyUnavailableError
from hotspot.models.api import (
    ExtendSessionRequest,
    GrantModel,
    MessageResponse,
    RevokeResponse,
    SessionModel,
    SessionsResponse,
    StatsResponse,
    SuspiciousActivitiesResponse,
    SuspiciousActivityModel,
)
from hotspot.services.admin import AdminService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.get("/sessions", response_model=SessionsResponse)
async def list_sessions(admin: AdminService = Depends(get_admin_service)) -> SessionsResponse:
    """Live sessions and enforcement grants, newest first."""
    sessions, grants = await admin.list_sessions()
    return SessionsResponse(
        sessions=[
            SessionModel(
                reference=s.reference,
                mac=s.mac,
                ip=s.ip,
                ttl_seconds=s.ttl_seconds,
                created_at=s.created_at,
                last_seen_at=s.last_seen_at,
            )
            for s in sessions
        ],
        grants=[
            GrantModel(
                reference=g.reference,
                mac=g.mac,
                ip=g.ip,
                ttl_seconds=g.ttl_seconds,
                granted_at=g.granted_at,
            )
            for g in grants
        ],
        total=len(sessions),
    )


@router.delete("/sessions/{reference}", response_model=RevokeResponse)
async def revoke_session(
    reference: str,
    admin: AdminService = Depends(get_admin_service),
) -> RevokeResponse:
    """Revoke a session and remove its access from every enforcer."""
    result = await admin.revoke(reference.strip().upper())

    if result.report.ok:
        message = "Session revoked successfully"
    else:
        message = "Session revoked; some enforcers failed"

    return RevokeResponse(
        reference=result.reference,
        message=message,
        enforcer_failures=result.report.failure_map,
    )


@router.post("/sessions/{reference}/extend", response_model=MessageResponse)
async def extend_session(
    reference: str,
    body: ExtendSessionRequest,
    admin: AdminService = Depends(get_admin_service),
) -> MessageResponse:
    """Add time to a live session."""
    try:
        extended = await admin.extend(reference.strip().upper(), body.additional_seconds)
    except DependencyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc

    if not extended:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session not found: {reference}",
        )
    return MessageResponse(message=f"Session extended by {body.additional_seconds} seconds")


@router.get("/stats", response_model=StatsResponse)
async def get_stats(admin: AdminService = Depends(get_admin_service)) -> StatsResponse:
    """System-wide counters."""
    stats = await admin.stats()
    return StatsResponse(
        active_sessions=stats.active_sessions,
        active_grants=stats.active_grants,
        pending_removals=stats.pending_removals,
        suspicious_activities=stats.suspicious_activities,
        redis_memory=stats.redis_memory,
    )


@router.get("/suspicious", response_model=SuspiciousActivitiesResponse)
async def list_suspicious_activities(
    limit: int = Query(100, ge=1, le=1000),
    admin: AdminService = Depends(get_admin_service),
) -> SuspiciousActivitiesResponse:
    """Recent suspicious-activity reports from the fraud gate."""
    activities = await admin.suspicious_activities(limit=limit)
    return SuspiciousActivitiesResponse(
        activities=[SuspiciousActivityModel.model_validate(a) for a in activities],
        total=len(activities),
    )
