from pydantic import BaseModel
from typing import List, Optional

class LimitCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    current_usage: int
    limit: Optional[int] = None  # None = unlimited
    percent_used: int = 0

class UsageStats(BaseModel):
    # Current usage
    active_jobs: int
    total_candidates: int
    ai_scores_this_month: int
    team_members: int

    # Limits (None = unlimited)
    max_jobs: Optional[int] = None
    max_candidates: Optional[int] = None
    max_ai_scores_per_month: Optional[int] = None
    max_team_members: Optional[int] = None

    # Percentages
    jobs_percent: int = 0
    candidates_percent: int = 0
    ai_scores_percent: int = 0
    team_percent: int = 0

    workspace_type: str
    subscription_tier: str
    warnings: List[str] = []
