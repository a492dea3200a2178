"""
Tenant-wide usage ledger.

Plan limits live on the Tenant row and are independent of per-feature quotas:
both are evaluated at the point of use and either one failing blocks.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from hirefit.core.exceptions import AccessDeniedError, NotFoundError
from hirefit.core.init_system import PRICING_TIERS
from hirefit.models.candidate import Candidate
from hirefit.models.job import ACTIVE_JOB_STATUSES, Job
from hirefit.models.tenant import Tenant, first_of_month
from hirefit.models.user import User
from hirefit.schemas.usage import LimitCheckResult, UsageStats
from hirefit.services.base import BaseService

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _effective_limit(limit: Optional[int]) -> Optional[int]:
    if limit is None or limit < 0:
        return None
    return limit


def _percent(current: int, limit: Optional[int]) -> int:
    if limit is None:
        return 0
    if limit == 0:
        return 100
    return round(current / limit * 100)


def _limit_result(current: int, raw_limit: Optional[int], reason: str) -> LimitCheckResult:
    limit = _effective_limit(raw_limit)
    allowed = limit is None or current < limit
    return LimitCheckResult(
        allowed=allowed,
        reason=None if allowed else reason,
        current_usage=current,
        limit=limit,
        percent_used=_percent(current, limit),
    )


class UsageService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if not tenant:
            raise NotFoundError("Tenant not found")
        return tenant

    # --- Counts ---

    def _count_active_jobs(self, tenant_id: int) -> int:
        return self.db.query(Job).filter(Job.tenant_id == tenant_id, Job.status.in_(ACTIVE_JOB_STATUSES)).count()

    def _count_candidates(self, tenant_id: int) -> int:
        return self.db.query(Candidate).filter(Candidate.tenant_id == tenant_id).count()

    def _count_team_members(self, tenant_id: int) -> int:
        return self.db.query(User).filter(User.tenant_id == tenant_id, User.is_active == True).count()  # noqa: E712

    # --- Monthly AI-score counter ---

    def reset_monthly_usage_if_needed(self, tenant_id: int) -> bool:
        """Compare-and-set reset of the monthly AI-score counter. True when this call reset it."""
        tenant = self._get_tenant(tenant_id)
        today = _today()
        stored = tenant.usage_reset_date
        if (stored.year, stored.month) == (today.year, today.month):
            return False

        result = self.db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id, Tenant.usage_reset_date == stored)
            .values(ai_scores_used_this_month=0, usage_reset_date=first_of_month(today))
            .execution_options(synchronize_session=False)
        )
        self._commit()

        if result.rowcount:
            logger.info(f"Reset monthly usage for tenant {tenant_id}")
        return bool(result.rowcount)

    def increment_ai_score_usage(self, tenant_id: int) -> None:
        self.reset_monthly_usage_if_needed(tenant_id)
        self.db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(ai_scores_used_this_month=Tenant.ai_scores_used_this_month + 1)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        logger.debug(f"Incremented AI score usage for tenant {tenant_id}")

    # --- Checks ---

    def check_ai_score_limit(self, tenant_id: int) -> LimitCheckResult:
        self.reset_monthly_usage_if_needed(tenant_id)
        tenant = self._get_tenant(tenant_id)
        return _limit_result(
            tenant.ai_scores_used_this_month,
            tenant.max_ai_scores_per_month,
            f"AI score limit reached ({tenant.max_ai_scores_per_month}/month). Resets on the 1st. Upgrade for more.",
        )

    def check_candidate_limit(self, tenant_id: int) -> LimitCheckResult:
        tenant = self._get_tenant(tenant_id)
        return _limit_result(
            self._count_candidates(tenant_id),
            tenant.max_candidates,
            f"Candidate limit reached ({tenant.max_candidates} candidates). Upgrade your plan for more.",
        )

    def check_job_limit(self, tenant_id: int) -> LimitCheckResult:
        tenant = self._get_tenant(tenant_id)
        return _limit_result(
            self._count_active_jobs(tenant_id),
            tenant.max_jobs,
            f"Job limit reached ({tenant.max_jobs} jobs). Upgrade your plan for more.",
        )

    def check_team_member_limit(self, tenant_id: int) -> LimitCheckResult:
        tenant = self._get_tenant(tenant_id)
        return _limit_result(
            self._count_team_members(tenant_id),
            tenant.max_team_members,
            f"Team member limit reached ({tenant.max_team_members} users). Upgrade your plan for more.",
        )

    # --- Enforcement ---

    @staticmethod
    def _enforce(check: LimitCheckResult) -> None:
        if not check.allowed:
            raise AccessDeniedError(check.reason)

    def enforce_ai_score_limit(self, tenant_id: int) -> None:
        self._enforce(self.check_ai_score_limit(tenant_id))

    def enforce_candidate_limit(self, tenant_id: int) -> None:
        self._enforce(self.check_candidate_limit(tenant_id))

    def enforce_job_limit(self, tenant_id: int) -> None:
        self._enforce(self.check_job_limit(tenant_id))

    def enforce_team_member_limit(self, tenant_id: int) -> None:
        self._enforce(self.check_team_member_limit(tenant_id))

    # --- Reporting ---

    def get_usage_stats(self, tenant_id: int) -> UsageStats:
        self.reset_monthly_usage_if_needed(tenant_id)
        tenant = self._get_tenant(tenant_id)

        active_jobs = self._count_active_jobs(tenant_id)
        total_candidates = self._count_candidates(tenant_id)
        team_members = self._count_team_members(tenant_id)
        ai_scores = tenant.ai_scores_used_this_month or 0

        max_jobs = _effective_limit(tenant.max_jobs)
        max_candidates = _effective_limit(tenant.max_candidates)
        max_ai_scores = _effective_limit(tenant.max_ai_scores_per_month)
        max_team = _effective_limit(tenant.max_team_members)

        jobs_percent = _percent(active_jobs, max_jobs)
        candidates_percent = _percent(total_candidates, max_candidates)
        ai_scores_percent = _percent(ai_scores, max_ai_scores)
        team_percent = _percent(team_members, max_team)

        warnings: List[str] = []
        if jobs_percent >= 80:
            warnings.append(f"You've used {jobs_percent}% of your job posting limit")
        if candidates_percent >= 80:
            warnings.append(f"You've used {candidates_percent}% of your candidate limit")
        if ai_scores_percent >= 80:
            warnings.append(f"You've used {ai_scores_percent}% of your AI scores this month")
        if team_percent >= 100 and tenant.type == "personal":
            warnings.append("Upgrade to add team members")

        return UsageStats(
            active_jobs=active_jobs,
            total_candidates=total_candidates,
            ai_scores_this_month=ai_scores,
            team_members=team_members,
            max_jobs=max_jobs,
            max_candidates=max_candidates,
            max_ai_scores_per_month=max_ai_scores,
            max_team_members=max_team,
            jobs_percent=min(jobs_percent, 100),
            candidates_percent=min(candidates_percent, 100),
            ai_scores_percent=min(ai_scores_percent, 100),
            team_percent=min(team_percent, 100),
            workspace_type=tenant.type,
            subscription_tier=tenant.subscription_tier,
            warnings=warnings,
        )

    @staticmethod
    def get_pricing_tiers() -> List[Dict[str, Any]]:
        return PRICING_TIERS
