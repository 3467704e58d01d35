"""Application routes."""

from fastapi import APIRouter

from . import admin, auth, public

router = APIRouter()
router.include_router(public.router)
router.include_router(auth.router)
router.include_router(admin.router)

__all__ = ["router"]
