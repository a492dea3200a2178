import pytest
from datetime import date

from hirefit.core.exceptions import AccessDeniedError
from hirefit.core.init_system import UNLIMITED
from hirefit.models.candidate import Candidate
from hirefit.models.job import JobStatus
from hirefit.models.tenant import Tenant
from hirefit.services import usage as usage_module
from hirefit.services.usage import UsageService


def _add_candidates(db_session, tenant_id, count):
    for i in range(count):
        db_session.add(Candidate(
            tenant_id=tenant_id, email=f"person{i}@example.com", first_name="Person", last_name=str(i)
        ))
    db_session.commit()


def test_ai_score_limit_allows_under_quota(db_session, tenant):
    check = UsageService(db_session).check_ai_score_limit(tenant.id)
    assert check.allowed
    assert check.current_usage == 0
    assert check.limit == 20
    assert check.reason is None


def test_ai_score_limit_blocks_at_quota(db_session, tenant_factory):
    tenant = tenant_factory(max_ai_scores_per_month=2, ai_scores_used_this_month=2)
    service = UsageService(db_session)

    check = service.check_ai_score_limit(tenant.id)
    assert not check.allowed
    assert check.percent_used == 100
    assert "AI score limit reached (2/month)" in check.reason

    with pytest.raises(AccessDeniedError):
        service.enforce_ai_score_limit(tenant.id)


def test_negative_limit_means_unlimited(db_session, tenant_factory):
    tenant = tenant_factory(max_ai_scores_per_month=UNLIMITED, ai_scores_used_this_month=5000)
    check = UsageService(db_session).check_ai_score_limit(tenant.id)
    assert check.allowed
    assert check.limit is None
    assert check.percent_used == 0


def test_increment_ai_score_usage(db_session, tenant):
    service = UsageService(db_session)
    service.increment_ai_score_usage(tenant.id)
    service.increment_ai_score_usage(tenant.id)

    db_session.expire_all()
    assert db_session.get(Tenant, tenant.id).ai_scores_used_this_month == 2


def test_monthly_reset_is_idempotent(db_session, tenant_factory, monkeypatch):
    tenant = tenant_factory(ai_scores_used_this_month=7, usage_reset_date=date(2030, 1, 1))
    monkeypatch.setattr(usage_module, "_today", lambda: date(2030, 2, 10))
    service = UsageService(db_session)

    assert service.reset_monthly_usage_if_needed(tenant.id) is True
    assert service.reset_monthly_usage_if_needed(tenant.id) is False

    db_session.expire_all()
    refreshed = db_session.get(Tenant, tenant.id)
    assert refreshed.ai_scores_used_this_month == 0
    assert refreshed.usage_reset_date == date(2030, 2, 1)


def test_candidate_limit(db_session, tenant_factory):
    tenant = tenant_factory(max_candidates=2)
    _add_candidates(db_session, tenant.id, 2)

    check = UsageService(db_session).check_candidate_limit(tenant.id)
    assert not check.allowed
    assert check.current_usage == 2
    assert "Candidate limit reached (2 candidates)" in check.reason


def test_job_limit_counts_only_active_jobs(db_session, tenant_factory, job_factory):
    tenant = tenant_factory(max_jobs=2)
    job_factory(tenant.id, status=JobStatus.open)
    job_factory(tenant.id, status=JobStatus.closed)

    check = UsageService(db_session).check_job_limit(tenant.id)
    assert check.allowed
    assert check.current_usage == 1
    assert check.percent_used == 50


def test_team_member_limit(db_session, tenant, user):
    check = UsageService(db_session).check_team_member_limit(tenant.id)
    assert not check.allowed
    assert "Team member limit reached" in check.reason


def test_usage_stats_warnings(db_session, tenant_factory):
    tenant = tenant_factory(max_candidates=5, ai_scores_used_this_month=19)
    _add_candidates(db_session, tenant.id, 4)

    stats = UsageService(db_session).get_usage_stats(tenant.id)
    assert stats.total_candidates == 4
    assert stats.candidates_percent == 80
    assert stats.ai_scores_percent == 95
    assert "You've used 80% of your candidate limit" in stats.warnings
    assert "You've used 95% of your AI scores this month" in stats.warnings


def test_usage_stats_caps_percentages(db_session, tenant_factory):
    tenant = tenant_factory(max_ai_scores_per_month=10, ai_scores_used_this_month=15)
    stats = UsageService(db_session).get_usage_stats(tenant.id)
    assert stats.ai_scores_percent == 100
    assert "You've used 150% of your AI scores this month" in stats.warnings


def test_pricing_tiers_are_static():
    tiers = UsageService.get_pricing_tiers()
    assert [t["id"] for t in tiers] == ["free", "pro", "team", "enterprise"]
    assert tiers[-1]["limits"]["max_jobs"] == UNLIMITED


def test_usage_api(client, auth_headers):
    response = client.get("/api/usage", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["subscription_tier"] == "free"
    assert body["max_ai_scores_per_month"] == 20

    response = client.get("/api/usage/limits/ai-scores", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["allowed"] is True

    response = client.get("/api/usage/limits/widgets", headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["errors"][0]["code"] == "VALIDATION_ERROR"

    response = client.get("/api/usage/tiers")
    assert response.status_code == 200
    assert len(response.json()) == 4


def test_usage_api_requires_tenant_headers(client):
    response = client.get("/api/usage")
    assert response.status_code == 422
    assert response.json()["success"] is False


def test_usage_api_rejects_user_from_other_tenant(client, tenant_factory, user):
    other = tenant_factory(name="Beta Corp")
    response = client.get("/api/usage", headers={"X-Tenant-ID": str(other.id), "X-User-ID": str(user.id)})
    assert response.status_code == 403
