from fastapi import APIRouter
from hirefit.routers import candidate_resumes, features, resumes, usage

# Centralized API router hub
# Routers are aggregated here and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(resumes.router, tags=["Resumes"])
api_router.include_router(
    candidate_resumes.router, prefix="/candidates/{candidate_id}/resumes", tags=["Candidate Resumes"]
)
api_router.include_router(features.router, prefix="/features", tags=["Features"])
api_router.include_router(usage.router, prefix="/usage", tags=["Usage"])
