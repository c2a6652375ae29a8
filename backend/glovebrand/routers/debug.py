from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from glovebrand.db.enums import JobModeEnum
from glovebrand.db.models import BrandingJob
from glovebrand.routers.branding_jobs import get_job_service
from glovebrand.schemas.branding import RequeueRequest
from glovebrand.services.branding_jobs import BrandingJobService, JobNotFoundError
from glovebrand.temporal.client import get_temporal_client
from glovebrand.temporal.queue_trigger import start_job_workflow

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/queue")
def queue_depth(service: BrandingJobService = Depends(get_job_service)):
    return service.queue_depth()


@router.get("/deadletters")
def dead_letters(
    limit: int = Query(default=5, ge=1, le=20),
    service: BrandingJobService = Depends(get_job_service),
):
    return {"messages": service.peek_dead_letters(limit)}


@router.post("/requeue")
def requeue(payload: Optional[RequeueRequest] = None, service: BrandingJobService = Depends(get_job_service)):
    limit = payload.limit if payload is not None else 1
    return service.requeue_dead_letters(limit)


@router.get("/jobs")
def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    stale_minutes: Optional[int] = Query(default=None, ge=0),
    service: BrandingJobService = Depends(get_job_service),
):
    return {"jobs": service.list_jobs(limit=limit, stale_minutes=stale_minutes)}


@router.post("/start/{job_id}")
async def start_job(job_id: str, service: BrandingJobService = Depends(get_job_service)):
    async def start(job: BrandingJob) -> str:
        client = await get_temporal_client()
        return await start_job_workflow(
            client,
            job_id=job.job_id,
            team_url=job.team_url,
            mode=JobModeEnum(job.mode).value,
        )

    try:
        return await service.start_direct(job_id, start)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
