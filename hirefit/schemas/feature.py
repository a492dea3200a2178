from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Optional

class FeatureStatus(BaseModel):
    feature_id: str
    name: str
    description: str = ""
    enabled: bool
    usage_limited: bool
    limit: Optional[int] = None
    used: int = 0
    remaining: Optional[int] = None
    can_use: bool

class TenantFeatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: int
    feature_id: str
    enabled: bool
    usage_limit: Optional[int] = None
    usage_count: int

class TierConfig(BaseModel):
    name: str
    features: List[str]
    limits: Dict[str, int] = {}
