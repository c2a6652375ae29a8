from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from glovebrand.config import settings
from glovebrand.db.deps import get_session
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository
from glovebrand.db.repositories.queue_messages import queue_from_settings
from glovebrand.schemas.branding import (
    CancelJobResponse,
    JobStatusResponse,
    RetryJobResponse,
    SubmitJobRequest,
    SubmitJobResponse,
)
from glovebrand.services.branding_jobs import BrandingJobService, JobNotFoundError
from glovebrand.temporal.client import get_temporal_client

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(session: Session = Depends(get_session)) -> BrandingJobService:
    return BrandingJobService(
        BrandingJobsRepository(session),
        queue_from_settings(session, settings),
        settings,
    )


@router.post("", response_model=SubmitJobResponse, status_code=202)
def submit_job(payload: SubmitJobRequest, service: BrandingJobService = Depends(get_job_service)):
    result = service.submit(payload.teamUrl, payload.mode)
    return SubmitJobResponse(jobId=result.job_id, cached=result.cached)


@router.get("/{job_id}", response_model=JobStatusResponse)
def get_job(job_id: str, service: BrandingJobService = Depends(get_job_service)):
    try:
        return service.get_status(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@router.post("/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(job_id: str, service: BrandingJobService = Depends(get_job_service)):
    async def terminate(workflow_id: str) -> None:
        client = await get_temporal_client()
        await client.get_workflow_handle(workflow_id).terminate(reason="Job canceled by user.")

    try:
        return await service.cancel(job_id, terminate)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@router.post("/{job_id}/retry", response_model=RetryJobResponse)
def retry_job(job_id: str, service: BrandingJobService = Depends(get_job_service)):
    try:
        return service.retry(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
