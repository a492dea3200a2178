from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict, List

from hirefit.core.exceptions import ValidationError
from hirefit.database import get_db
from hirefit.dependencies import TenantContext, get_tenant_context
from hirefit.schemas.usage import LimitCheckResult, UsageStats
from hirefit.services.usage import UsageService

router = APIRouter()

LIMIT_CHECKS = {
    "jobs": UsageService.check_job_limit,
    "candidates": UsageService.check_candidate_limit,
    "ai-scores": UsageService.check_ai_score_limit,
    "team": UsageService.check_team_member_limit,
}


@router.get("", response_model=UsageStats)
def get_usage(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return UsageService(db).get_usage_stats(ctx.tenant_id)


@router.get("/tiers")
def get_pricing_tiers() -> List[Dict[str, Any]]:
    return UsageService.get_pricing_tiers()


@router.get("/limits/{resource}", response_model=LimitCheckResult)
def check_limit(
    resource: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    check = LIMIT_CHECKS.get(resource)
    if check is None:
        raise ValidationError(
            f"Unknown resource: {resource}",
            details={"supported": list(LIMIT_CHECKS)},
        )
    return check(UsageService(db), ctx.tenant_id)
