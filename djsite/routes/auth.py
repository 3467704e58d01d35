"""Admin sign-in and sign-out."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse

from djsite.dependencies import get_auth_service
from djsite.services.auth import SESSION_COOKIE, AuthenticationError, AuthService
from djsite.templating import render_login

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


@router.post("/login", name="admin_login")
async def login(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        session = await auth_service.sign_in(email, password)
    except AuthenticationError as exc:
        logger.info("Admin sign-in rejected for %s", email or "<blank>")
        return render_login(request, error=str(exc), email=email, status_code=401)

    response = RedirectResponse(request.url_for("admin_page"), status_code=303)
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=session.ttl_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return response


@router.post("/logout", name="admin_logout")
async def logout(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.sign_out(request.cookies.get(SESSION_COOKIE))
    response = RedirectResponse(request.url_for("login_page"), status_code=303)
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response
