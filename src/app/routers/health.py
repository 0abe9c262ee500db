from fastapi import APIRouter, Depends
from app.deps import Services, get_services

router = APIRouter()

@router.get("/")
def healthcheck(services: Services = Depends(get_services)):
    # touches the job table, so a dead database shows up here
    return {"ok": True, "active_job": services.controller.active_job()}
