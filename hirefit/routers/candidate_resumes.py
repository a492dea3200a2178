from fastapi import APIRouter, Depends, File, Response, UploadFile
from typing import List

from hirefit.dependencies import TenantContext, get_resume_service, get_tenant_context
from hirefit.schemas.resume import ResumeSummary, UploadedFile
from hirefit.services.resumes import ResumeService

router = APIRouter()


@router.post("", response_model=ResumeSummary, status_code=201)
async def upload_candidate_resume(
    candidate_id: int,
    file: UploadFile = File(...),
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    uploaded = UploadedFile(
        original_file_name=file.filename or "resume",
        file_type=file.content_type or "application/octet-stream",
        content=await file.read(),
    )
    return service.upload(ctx.tenant_id, ctx.user_id, candidate_id, uploaded)


@router.get("", response_model=List[ResumeSummary])
def list_candidate_resumes(
    candidate_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    return service.list_for_candidate(ctx.tenant_id, candidate_id)


@router.get("/{resume_id}", response_model=ResumeSummary)
def get_candidate_resume(
    candidate_id: int,
    resume_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    return service.get(ctx.tenant_id, candidate_id, resume_id)


@router.get("/{resume_id}/file")
def download_candidate_resume(
    candidate_id: int,
    resume_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    resume, content = service.read_file(ctx.tenant_id, candidate_id, resume_id)
    return Response(
        content=content,
        media_type=resume.file_type,
        headers={"Content-Disposition": f'attachment; filename="{resume.original_file_name}"'},
    )


@router.post("/{resume_id}/set-primary", response_model=ResumeSummary)
def set_primary_resume(
    candidate_id: int,
    resume_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    return service.set_primary(ctx.tenant_id, candidate_id, resume_id)


@router.delete("/{resume_id}", status_code=204)
def delete_candidate_resume(
    candidate_id: int,
    resume_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ResumeService = Depends(get_resume_service),
):
    service.delete(ctx.tenant_id, candidate_id, resume_id)
    return Response(status_code=204)
