from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile
from typing import List

from hirefit.dependencies import TenantContext, get_resume_processing_service, get_tenant_context
from hirefit.schemas.resume import (
    AIStatus, ResumeProcessingStatus, ResumeUploadResponse, RetryResponse, UploadedFile
)
from hirefit.services.resume_processing import ResumeProcessingService

router = APIRouter()


@router.post("/jobs/{job_id}/resumes", response_model=ResumeUploadResponse, status_code=202)
async def upload_resume(
    job_id: int,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeProcessingService = Depends(get_resume_processing_service),
):
    uploaded = UploadedFile(
        original_file_name=file.filename or "resume",
        file_type=file.content_type or "application/octet-stream",
        content=await file.read(),
    )
    return service.upload_and_process(ctx.tenant_id, ctx.user_id, job_id, uploaded, background_tasks)


@router.get("/jobs/{job_id}/resumes/status", response_model=List[ResumeProcessingStatus])
def get_processing_status(
    job_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeProcessingService = Depends(get_resume_processing_service),
):
    return service.get_job_processing_status(ctx.tenant_id, job_id)


@router.post("/resumes/{resume_id}/retry", response_model=RetryResponse, status_code=202)
def retry_resume(
    resume_id: int,
    background_tasks: BackgroundTasks,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeProcessingService = Depends(get_resume_processing_service),
):
    return service.retry_processing(ctx.tenant_id, ctx.user_id, resume_id, background_tasks)


@router.get("/ai/status", response_model=AIStatus)
def get_ai_status(service: ResumeProcessingService = Depends(get_resume_processing_service)):
    return service.get_ai_status()
