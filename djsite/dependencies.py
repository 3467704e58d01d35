"""Process-wide services and their FastAPI dependency getters."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from djsite.config import settings
from djsite.services.auth import SESSION_COOKIE, AdminSession, AuthService, build_auth_service
from djsite.services.gateway import DataGateway, build_gateway
from djsite.services.geo import GeoService
from djsite.services.managers import (
    AlbumsManager,
    DashboardService,
    EventsManager,
    MessagesManager,
    PhotosManager,
    SettingsManager,
    VideosManager,
)
from djsite.services.preload import PreloadCoordinator, PreloadRegistry, fetch_image
from djsite.services.sections import SectionDataService
from djsite.services.storage import StorageGateway, build_storage
from djsite.templating import warm_templates

_gateway = build_gateway(settings)
_storage = build_storage(settings)
_auth_service = build_auth_service(settings)
_geo_service = GeoService(
    settings.geo_api_base_url, timeout=settings.geo_api_timeout_seconds
)


def _new_coordinator(gateway: DataGateway | None) -> PreloadCoordinator:
    return PreloadCoordinator(
        gateway,
        readiness=warm_templates,
        image_fetcher=fetch_image if settings.preload_warm_images else None,
        readiness_timeout=settings.preload_readiness_timeout_seconds,
        image_timeout=settings.preload_image_timeout_seconds,
        settle_delay=settings.preload_settle_seconds,
        photo_limit=settings.preload_photo_limit,
        video_limit=settings.preload_video_limit,
        event_limit=settings.preload_event_limit,
    )


_preloads = PreloadRegistry(
    _new_coordinator,
    ttl=settings.preload_load_ttl_seconds,
    max_loads=settings.preload_max_loads,
)

_BACKEND_MISSING = "The content backend is not configured"


def get_gateway() -> DataGateway | None:
    return _gateway


def get_storage() -> StorageGateway:
    return _storage


def get_auth_service() -> AuthService:
    return _auth_service


def get_geo_service() -> GeoService:
    return _geo_service


def get_preloads() -> PreloadRegistry:
    return _preloads


def get_section_service(
    gateway: DataGateway | None = Depends(get_gateway),
) -> SectionDataService:
    return SectionDataService(gateway)


def require_gateway(gateway: DataGateway | None = Depends(get_gateway)) -> DataGateway:
    if gateway is None:
        raise HTTPException(status_code=503, detail=_BACKEND_MISSING)
    return gateway


async def require_admin(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> AdminSession:
    session = await auth_service.describe(request.cookies.get(SESSION_COOKIE))
    if session is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return session


def get_albums_manager(
    gateway: DataGateway = Depends(require_gateway),
    storage: StorageGateway = Depends(get_storage),
) -> AlbumsManager:
    return AlbumsManager(gateway, storage, max_cover_bytes=settings.max_cover_image_bytes)


def get_photos_manager(
    gateway: DataGateway = Depends(require_gateway),
    storage: StorageGateway = Depends(get_storage),
) -> PhotosManager:
    return PhotosManager(gateway, storage)


def get_videos_manager(
    gateway: DataGateway = Depends(require_gateway),
    storage: StorageGateway = Depends(get_storage),
) -> VideosManager:
    return VideosManager(gateway, storage, max_cover_bytes=settings.max_cover_image_bytes)


def get_events_manager(gateway: DataGateway = Depends(require_gateway)) -> EventsManager:
    return EventsManager(gateway)


def get_messages_manager(gateway: DataGateway = Depends(require_gateway)) -> MessagesManager:
    return MessagesManager(gateway)


def get_settings_manager(gateway: DataGateway = Depends(require_gateway)) -> SettingsManager:
    return SettingsManager(gateway)


def get_dashboard_service(
    gateway: DataGateway | None = Depends(get_gateway),
) -> DashboardService:
    return DashboardService(gateway)
