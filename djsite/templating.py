"""Jinja2 template environment and the per-request page context."""

from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import Request
from fastapi.templating import Jinja2Templates

from djsite.i18n import (
    determine_locale,
    get_gettext_functions,
    get_html_lang,
    list_supported_ui_locales,
)

TEMPLATE_DIR = Path(__file__).parent / "templates"
PAGE_TEMPLATES = ("base.html", "home.html", "login.html", "admin.html")

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
templates.env.add_extension("jinja2.ext.i18n")


async def warm_templates() -> None:
    """Compile the page templates so the first request does not pay for it."""

    def _compile() -> None:
        for name in PAGE_TEMPLATES:
            templates.get_template(name)

    await asyncio.to_thread(_compile)


def page_context(request: Request, extra: dict) -> dict:
    """Build a template context with localisation helpers for the request."""
    locale = getattr(request.state, "locale", None) or determine_locale(
        request.cookies.get("ui_locale"), request.headers.get("accept-language")
    )
    gettext_func, ngettext_func = get_gettext_functions(locale)
    override_locale = getattr(request.state, "locale_override", None)
    language_options: list[dict[str, str | bool]] = [
        {
            "code": "browser",
            "label": gettext_func("Follow browser language"),
            "active": override_locale is None,
            "href": str(request.url_for("set_ui_language", locale_code="browser")),
        }
    ]
    for code, label in list_supported_ui_locales():
        language_options.append(
            {
                "code": code,
                "label": gettext_func(label),
                "active": override_locale == code,
                "href": str(request.url_for("set_ui_language", locale_code=code)),
            }
        )
    context = {
        "request": request,
        "_": gettext_func,
        "gettext": gettext_func,
        "ngettext": ngettext_func,
        "ui_locale": get_html_lang(locale),
        "ui_language_options": language_options,
    }
    context.update(extra)
    return context


def render_login(
    request: Request, *, error: str | None = None, email: str = "", status_code: int = 200
):
    return templates.TemplateResponse(
        request,
        "login.html",
        page_context(request, {"error": error, "email": email}),
        status_code=status_code,
    )
