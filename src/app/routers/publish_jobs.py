from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional
from app.deps import Services, get_services
from jobs.controller import JobProgress
from jobs.errors import EnqueueError, JobConflictError, JobNotFoundError, JobStateError
from jobs.runner import run_job_guarded

router = APIRouter(prefix="/publish-jobs")

class PublishRequest(BaseModel):
    entity_ids: List[str] = Field(default_factory=list)
    channel_ids: List[str] = Field(default_factory=list)
    requested_by: Optional[str] = None

@router.post("", status_code=202)
def enqueue(req: PublishRequest, background: BackgroundTasks, services: Services = Depends(get_services)):
    try:
        job_id = services.controller.enqueue(req.entity_ids, req.channel_ids, req.requested_by)
    except EnqueueError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    except JobConflictError as ex:
        raise HTTPException(status_code=409, detail={"error": str(ex), "job_id": ex.active_job_id})
    # fire-and-forget; the client polls GET /publish-jobs/{id}
    background.add_task(run_job_guarded, services.processor, job_id)
    return {"job_id": job_id}

@router.get("/active")
def active(requested_by: Optional[str] = None, services: Services = Depends(get_services)):
    job_id = services.controller.active_job(requested_by)
    if not job_id:
        return {"active": False}
    try:
        job = services.controller.get_progress(job_id)
    except JobNotFoundError:
        return {"active": False}
    return {"active": True, "job": job.model_dump(mode="json")}

@router.get("/{job_id}", response_model=JobProgress)
def progress(job_id: str, services: Services = Depends(get_services)):
    try:
        return services.controller.get_progress(job_id)
    except JobNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))

@router.delete("/{job_id}")
def cancel(job_id: str, services: Services = Depends(get_services)):
    try:
        services.controller.cancel(job_id)
    except JobNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    except JobStateError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return {"ok": True}
