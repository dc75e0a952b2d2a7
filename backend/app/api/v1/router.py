"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import branches, packages, routes

router = APIRouter()

router.include_router(branches.router)
router.include_router(packages.branch_router)
router.include_router(packages.router)
router.include_router(routes.router)
