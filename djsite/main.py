import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from .config import settings
from .db import create_tables
from .dependencies import (
    get_auth_service,
    get_dashboard_service,
    get_gateway,
    get_preloads,
    get_section_service,
)
from .i18n import determine_locale, normalize_locale
from .routes import router as api_router
from .services.auth import SESSION_COOKIE, AuthService
from .services.managers import (
    AdminActionError,
    AdminValidationError,
    ConfirmationRequired,
    DashboardService,
    RecordNotFound,
)
from .services.gateway import DataGateway
from .services.preload import PreloadRegistry
from .services.sections import ContactUnavailable, SectionDataService
from .templating import page_context, render_login, templates

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(levelname)s: %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

_STATIC_DIR = Path(__file__).parent / "static"
_ADMIN_TABS = ("dashboard", "albums", "photos", "videos", "events", "messages", "settings")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()

    yield

    await get_preloads().close()


app = FastAPI(title="DJ Site", version="0.1.0", lifespan=lifespan)

app.mount("/static", StaticFiles(directory=_STATIC_DIR), name="static")
if settings.storage_backend == "local":
    app.mount(
        settings.media_url_prefix,
        StaticFiles(directory=str(settings.media_root), check_dir=False),
        name="media",
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.middleware("http")
async def set_request_locale(request: Request, call_next):
    """Attach the resolved UI locale to the request state."""
    cookie_locale = request.cookies.get("ui_locale")
    resolved_locale = determine_locale(
        cookie_locale, request.headers.get("accept-language")
    )
    request.state.locale = resolved_locale
    request.state.locale_override = normalize_locale(cookie_locale)
    response = await call_next(request)
    return response


@app.exception_handler(AdminValidationError)
async def handle_validation_error(request: Request, exc: AdminValidationError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(ConfirmationRequired)
async def handle_missing_confirmation(request: Request, exc: ConfirmationRequired):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(RecordNotFound)
async def handle_not_found(request: Request, exc: RecordNotFound):
    return JSONResponse({"detail": "Not found"}, status_code=404)


@app.exception_handler(AdminActionError)
async def handle_action_error(request: Request, exc: AdminActionError):
    return JSONResponse({"detail": exc.message}, status_code=502)


@app.exception_handler(ContactUnavailable)
async def handle_contact_unavailable(request: Request, exc: ContactUnavailable):
    return JSONResponse({"detail": str(exc)}, status_code=503)


@app.get("/", include_in_schema=False, name="home")
async def home(
    request: Request,
    album: str | None = Query(default=None),
    events: Literal["upcoming", "past"] = Query(default="upcoming"),
    sections: SectionDataService = Depends(get_section_service),
    gateway: DataGateway | None = Depends(get_gateway),
    preloads: PreloadRegistry = Depends(get_preloads),
):
    """Render the public one-page site.

    Every full page load starts a fresh preload; the sections read its snapshot
    and the loading screen follows its progress through the embedded token.
    """
    load = preloads.open(gateway)
    await load.coordinator.wait_for_snapshot(settings.preload_render_wait_seconds)
    sections = sections.using(load.coordinator.snapshot)
    site, gallery, videos, calendar = await asyncio.gather(
        sections.site_settings(),
        sections.gallery(album),
        sections.videos(),
        sections.events(events),
    )
    return templates.TemplateResponse(
        request,
        "home.html",
        page_context(
            request,
            {
                "site": site,
                "gallery": gallery,
                "videos": videos,
                "calendar": calendar,
                "show_loader": not load.coordinator.latest.complete,
                "preload_token": load.token,
            },
        ),
    )


@app.get("/login", include_in_schema=False, name="login_page")
async def login_page(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    session = await auth_service.describe(request.cookies.get(SESSION_COOKIE))
    if session is not None:
        return RedirectResponse(request.url_for("admin_page"), status_code=303)
    return render_login(request)


@app.get("/admin", include_in_schema=False, name="admin_page")
async def admin_page(
    request: Request,
    tab: str = Query(default="dashboard"),
    auth_service: AuthService = Depends(get_auth_service),
    dashboard: DashboardService = Depends(get_dashboard_service),
):
    """Render the admin console shell; data is loaded from the admin API."""
    session = await auth_service.describe(request.cookies.get(SESSION_COOKIE))
    if session is None:
        return RedirectResponse(request.url_for("login_page"), status_code=303)
    active_tab = tab if tab in _ADMIN_TABS else "dashboard"
    return templates.TemplateResponse(
        request,
        "admin.html",
        page_context(
            request,
            {
                "admin_email": session.email,
                "tabs": _ADMIN_TABS,
                "active_tab": active_tab,
                "stats": await dashboard.stats(),
            },
        ),
    )


@app.get("/ui-language/{locale_code}", include_in_schema=False, name="set_ui_language")
async def set_ui_language(request: Request, locale_code: str):
    """Persist a UI language selection and redirect back to the referring page."""
    referer = request.headers.get("referer")
    default_target = str(request.url_for("home"))
    target = default_target
    if referer:
        parsed = urlparse(referer)
        if not parsed.netloc or parsed.netloc == request.url.netloc:
            target = referer

    normalized = normalize_locale(locale_code)
    response = RedirectResponse(target, status_code=303)
    if locale_code.lower() == "browser" or not normalized:
        response.delete_cookie("ui_locale", path="/")
    else:
        response.set_cookie(
            "ui_locale",
            normalized,
            max_age=60 * 60 * 24 * 365,
            path="/",
            httponly=False,
            samesite="lax",
        )
    return response
