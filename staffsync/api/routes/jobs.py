"""Jobs API - Assignment and status changes"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_collection_synchronizer, get_correlation_id_dep
from ...domain.enums import JobStatus
from ...domain.models import JobAssignment
from ...services.collection_synchronizer import CollectionSynchronizer
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class AssignJobRequest(BaseModel):
    """Assign a job to a staff member by any reference"""
    staff_ref: str = Field(..., min_length=1)


class UpdateJobStatusRequest(BaseModel):
    """Move a job to a new status"""
    status: JobStatus


@router.post("/{job_id}/assign", response_model=JobAssignment)
async def assign_job(
    job_id: str,
    request: AssignJobRequest,
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Assign a job; the assignee is stored by canonical identity key only"""
    logger.info("Assign job requested", extra={"job_id": job_id, "staff_ref": request.staff_ref})
    return await synchronizer.assign_job(job_id, request.staff_ref)


@router.post("/{job_id}/status", response_model=JobAssignment)
async def update_job_status(
    job_id: str,
    request: UpdateJobStatusRequest,
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Change job status (pending -> assigned -> in_progress -> completed, or cancelled)"""
    logger.info(
        "Job status change requested",
        extra={"job_id": job_id, "status": request.status.value}
    )
    return await synchronizer.update_job_status(job_id, request.status)
