"""
API endpoints for background job management
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from marketplace.core.exceptions import ApiError
from marketplace.services.scheduler_service import scheduler_service, task_for, validate_cron_expression

router = APIRouter()


class CustomJobCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_\-]+$")
    cron_expression: str
    job_type: str = Field(..., description="Built-in job whose task this job runs")
    description: str = ""


class CronValidation(BaseModel):
    expression: str


@router.get("/jobs")
async def get_job_status():
    try:
        return {"status": "success", "data": scheduler_service.get_job_status()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting job status: {str(e)}")


@router.get("/jobs/available")
async def get_available_jobs():
    return {"status": "success", "data": scheduler_service.get_available_jobs()}


@router.post("/jobs/start")
async def start_all_jobs():
    try:
        scheduler_service.start_all_jobs()
        return {"status": "success", "message": "All jobs started"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error starting jobs: {str(e)}")


@router.post("/jobs/stop")
async def stop_all_jobs():
    try:
        scheduler_service.stop_all_jobs()
        return {"status": "success", "message": "All jobs stopped"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error stopping jobs: {str(e)}")


@router.post("/jobs", status_code=201)
async def add_custom_job(data: CustomJobCreate):
    """Schedule a built-in task under a new name and cron expression"""
    try:
        job = scheduler_service.add_custom_job(data.name, data.cron_expression, task_for(data.job_type),
                                               data.description)
        return {"status": "success", "data": job}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adding job: {str(e)}")


@router.delete("/jobs/{name}")
async def remove_custom_job(name: str):
    try:
        scheduler_service.remove_custom_job(name)
        return {"status": "success", "message": f"Job {name} removed"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error removing job: {str(e)}")


@router.post("/jobs/{name}/start")
async def start_job(name: str):
    try:
        scheduler_service.start_job(name)
        return {"status": "success", "message": f"Job {name} started"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error starting job: {str(e)}")


@router.post("/jobs/{name}/stop")
async def stop_job(name: str):
    try:
        scheduler_service.stop_job(name)
        return {"status": "success", "message": f"Job {name} stopped"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error stopping job: {str(e)}")


@router.post("/jobs/{name}/run")
async def run_job_now(name: str):
    try:
        succeeded = scheduler_service.run_job_now(name)
        return {"status": "success", "data": {"job": name, "succeeded": succeeded}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error running job: {str(e)}")


@router.post("/validate-cron")
async def validate_cron(data: CronValidation):
    return {"status": "success", "data": {"expression": data.expression,
                                          "valid": validate_cron_expression(data.expression)}}
