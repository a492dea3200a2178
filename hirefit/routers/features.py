from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict, List

from hirefit.database import get_db
from hirefit.dependencies import TenantContext, get_tenant_context
from hirefit.schemas.feature import FeatureStatus
from hirefit.services.features import FeatureService

router = APIRouter()


@router.get("", response_model=List[FeatureStatus])
def list_features(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Every catalog feature with this tenant's effective status."""
    return FeatureService(db).get_all_feature_statuses(ctx.tenant_id)


@router.get("/tiers")
def list_tiers(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return FeatureService(db).get_all_tiers()


@router.get("/{feature_id}", response_model=FeatureStatus)
def get_feature(
    feature_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return FeatureService(db).get_feature_status(ctx.tenant_id, feature_id)
