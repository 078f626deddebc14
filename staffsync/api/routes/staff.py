"""Staff API - Identity resolution and a staff member's jobs"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..deps import get_collection_synchronizer, get_identity_resolver
from ...domain.enums import JobStatus
from ...domain.errors import PartialAvailabilityError
from ...domain.models import JobAssignment
from ...services.collection_synchronizer import CollectionSynchronizer
from ...services.identity_resolver import IdentityResolver
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================

class ResolveResponse(BaseModel):
    """Canonical identity for a staff reference"""
    staff_ref: str
    canonical_identity_key: str


class JobListResponse(BaseModel):
    """Jobs for one identity, possibly incomplete"""
    canonical_identity_key: str
    items: List[JobAssignment]
    total: int
    partial: bool = False
    unavailable_collections: List[str] = []


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/resolve", response_model=ResolveResponse)
async def resolve_staff(
    ref: str = Query(..., min_length=1, description="Record ID, email or canonical key"),
    resolver: IdentityResolver = Depends(get_identity_resolver)
):
    """Resolve any staff reference to its canonical identity key"""
    key = await resolver.resolve(ref)
    return ResolveResponse(staff_ref=ref, canonical_identity_key=key)


@router.get("/{ref}/jobs", response_model=JobListResponse)
async def get_staff_jobs(
    ref: str,
    status: Optional[List[JobStatus]] = Query(None),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer)
):
    """
    Get jobs assigned to a staff member across all job collections.

    When some collections are unreadable the readable jobs are still
    returned, flagged as partial.
    """
    key = await resolver.resolve(ref)

    try:
        jobs = await synchronizer.query_jobs_for(key, statuses=status)
        unavailable: List[str] = []
    except PartialAvailabilityError as e:
        jobs = e.jobs
        unavailable = e.failed

    return JobListResponse(
        canonical_identity_key=key,
        items=jobs,
        total=len(jobs),
        partial=bool(unavailable),
        unavailable_collections=unavailable
    )
