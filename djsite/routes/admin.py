"""Authenticated admin JSON API."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile

from djsite.dependencies import (
    get_albums_manager,
    get_dashboard_service,
    get_events_manager,
    get_geo_service,
    get_messages_manager,
    get_photos_manager,
    get_settings_manager,
    get_videos_manager,
    require_admin,
)
from djsite.schemas import (
    AlbumPayload,
    AlbumRecord,
    BulkDeletePayload,
    ContactMessageRecord,
    DashboardStats,
    EventPayload,
    EventRecord,
    PhotoRecord,
    PhotoUpdatePayload,
    SettingsPayload,
    VideoPayload,
    VideoRecord,
)
from djsite.services.geo import GeoService
from djsite.services.managers import (
    AlbumsManager,
    DashboardService,
    EventsManager,
    MessageFilter,
    MessagesManager,
    PhotosManager,
    SettingsManager,
    StoredObject,
    UploadedFile,
    VideosManager,
)

router = APIRouter(
    prefix="/admin/api", tags=["admin"], dependencies=[Depends(require_admin)]
)


async def _read_upload(upload: UploadFile) -> UploadedFile:
    return UploadedFile(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        data=await upload.read(),
    )


def _stored(stored: StoredObject) -> dict[str, str]:
    return {"url": stored.url, "storage_path": stored.storage_path}


@router.get("/dashboard", response_model=DashboardStats)
async def dashboard(
    service: DashboardService = Depends(get_dashboard_service),
) -> DashboardStats:
    return await service.stats()


# Albums


@router.get("/albums", response_model=List[AlbumRecord])
async def list_albums(manager: AlbumsManager = Depends(get_albums_manager)):
    return await manager.list()


@router.post("/albums", response_model=AlbumRecord, status_code=201)
async def create_album(
    payload: AlbumPayload, manager: AlbumsManager = Depends(get_albums_manager)
):
    return await manager.create(payload)


@router.put("/albums/{album_id}", response_model=AlbumRecord)
async def update_album(
    album_id: str,
    payload: AlbumPayload,
    manager: AlbumsManager = Depends(get_albums_manager),
):
    return await manager.update(album_id, payload)


@router.delete("/albums/{album_id}", status_code=204)
async def delete_album(
    album_id: str,
    confirm: bool = Query(default=False),
    manager: AlbumsManager = Depends(get_albums_manager),
) -> Response:
    await manager.delete(album_id, confirm=confirm)
    return Response(status_code=204)


@router.post("/albums/cover", status_code=201)
async def upload_album_cover(
    file: UploadFile = File(...),
    manager: AlbumsManager = Depends(get_albums_manager),
) -> dict[str, str]:
    return _stored(await manager.upload_cover(await _read_upload(file)))


# Photos


@router.get("/photos")
async def list_photos(manager: PhotosManager = Depends(get_photos_manager)):
    listing = await manager.list()
    return {"photos": listing.photos, "albums": listing.albums}


@router.post("/photos", status_code=201)
async def upload_photos(
    files: List[UploadFile] = File(...),
    album_id: str | None = Form(default=None),
    manager: PhotosManager = Depends(get_photos_manager),
):
    uploads = [await _read_upload(upload) for upload in files]
    report = await manager.upload(uploads, album_id=album_id)
    return {"uploaded": report.uploaded, "failed": report.failed}


@router.put("/photos/{photo_id}", response_model=PhotoRecord)
async def update_photo(
    photo_id: str,
    payload: PhotoUpdatePayload,
    manager: PhotosManager = Depends(get_photos_manager),
):
    return await manager.update(photo_id, payload)


@router.post("/photos/{photo_id}/toggle-published", response_model=PhotoRecord)
async def toggle_photo_published(
    photo_id: str, manager: PhotosManager = Depends(get_photos_manager)
):
    return await manager.toggle_published(photo_id)


@router.delete("/photos/{photo_id}", status_code=204)
async def delete_photo(
    photo_id: str,
    confirm: bool = Query(default=False),
    manager: PhotosManager = Depends(get_photos_manager),
) -> Response:
    await manager.delete(photo_id, confirm=confirm)
    return Response(status_code=204)


@router.post("/photos/bulk-delete")
async def delete_photos(
    payload: BulkDeletePayload,
    confirm: bool = Query(default=False),
    manager: PhotosManager = Depends(get_photos_manager),
) -> dict[str, int]:
    deleted = await manager.delete_many(payload.ids, confirm=confirm)
    return {"deleted": deleted}


# Videos


@router.get("/videos", response_model=List[VideoRecord])
async def list_videos(manager: VideosManager = Depends(get_videos_manager)):
    return await manager.list()


@router.post("/videos", response_model=VideoRecord, status_code=201)
async def create_video(
    payload: VideoPayload, manager: VideosManager = Depends(get_videos_manager)
):
    return await manager.create(payload)


@router.put("/videos/{video_id}", response_model=VideoRecord)
async def update_video(
    video_id: str,
    payload: VideoPayload,
    manager: VideosManager = Depends(get_videos_manager),
):
    return await manager.update(video_id, payload)


@router.post("/videos/file", status_code=201)
async def upload_video_file(
    file: UploadFile = File(...),
    manager: VideosManager = Depends(get_videos_manager),
) -> dict[str, str]:
    return _stored(await manager.upload_file(await _read_upload(file)))


@router.post("/videos/cover", status_code=201)
async def upload_video_cover(
    file: UploadFile = File(...),
    manager: VideosManager = Depends(get_videos_manager),
) -> dict[str, str]:
    return _stored(await manager.upload_cover(await _read_upload(file)))


@router.post("/videos/{video_id}/toggle-published", response_model=VideoRecord)
async def toggle_video_published(
    video_id: str, manager: VideosManager = Depends(get_videos_manager)
):
    return await manager.toggle_published(video_id)


@router.post("/videos/{video_id}/toggle-featured", response_model=VideoRecord)
async def toggle_video_featured(
    video_id: str, manager: VideosManager = Depends(get_videos_manager)
):
    return await manager.toggle_featured(video_id)


@router.delete("/videos/{video_id}", status_code=204)
async def delete_video(
    video_id: str,
    confirm: bool = Query(default=False),
    manager: VideosManager = Depends(get_videos_manager),
) -> Response:
    await manager.delete(video_id, confirm=confirm)
    return Response(status_code=204)


# Events


@router.get("/events", response_model=List[EventRecord])
async def list_events(manager: EventsManager = Depends(get_events_manager)):
    return await manager.list()


@router.post("/events", response_model=EventRecord, status_code=201)
async def create_event(
    payload: EventPayload, manager: EventsManager = Depends(get_events_manager)
):
    return await manager.create(payload)


@router.put("/events/{event_id}", response_model=EventRecord)
async def update_event(
    event_id: str,
    payload: EventPayload,
    manager: EventsManager = Depends(get_events_manager),
):
    return await manager.update(event_id, payload)


@router.post("/events/{event_id}/toggle-published", response_model=EventRecord)
async def toggle_event_published(
    event_id: str, manager: EventsManager = Depends(get_events_manager)
):
    return await manager.toggle_published(event_id)


@router.post("/events/{event_id}/toggle-featured", response_model=EventRecord)
async def toggle_event_featured(
    event_id: str, manager: EventsManager = Depends(get_events_manager)
):
    return await manager.toggle_featured(event_id)


@router.delete("/events/{event_id}", status_code=204)
async def delete_event(
    event_id: str,
    confirm: bool = Query(default=False),
    manager: EventsManager = Depends(get_events_manager),
) -> Response:
    await manager.delete(event_id, confirm=confirm)
    return Response(status_code=204)


# Messages


@router.get("/messages")
async def list_messages(
    view: MessageFilter = Query(default="all", alias="filter"),
    manager: MessagesManager = Depends(get_messages_manager),
):
    listing = await manager.list(view)
    return {"messages": listing.messages, "unread_count": listing.unread_count}


@router.post("/messages/mark-all-read")
async def mark_all_messages_read(
    manager: MessagesManager = Depends(get_messages_manager),
) -> dict[str, int]:
    return {"updated": await manager.mark_all_read()}


@router.get("/messages/{message_id}", response_model=ContactMessageRecord)
async def open_message(
    message_id: str, manager: MessagesManager = Depends(get_messages_manager)
):
    return await manager.open(message_id)


@router.post("/messages/{message_id}/toggle-archive", response_model=ContactMessageRecord)
async def toggle_message_archive(
    message_id: str, manager: MessagesManager = Depends(get_messages_manager)
):
    return await manager.toggle_archive(message_id)


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    confirm: bool = Query(default=False),
    manager: MessagesManager = Depends(get_messages_manager),
) -> Response:
    await manager.delete(message_id, confirm=confirm)
    return Response(status_code=204)


# Settings


@router.get("/settings")
async def load_settings(
    manager: SettingsManager = Depends(get_settings_manager),
) -> dict[str, str]:
    return await manager.load()


@router.put("/settings")
async def save_settings(
    payload: SettingsPayload,
    manager: SettingsManager = Depends(get_settings_manager),
) -> dict[str, str]:
    await manager.save_many(payload.values)
    return await manager.load()


# Geography


@router.get("/geo/states")
async def list_states(geo: GeoService = Depends(get_geo_service)):
    states = await geo.states()
    return [
        {"id": state.id, "abbreviation": state.abbreviation, "name": state.name}
        for state in states
    ]


@router.get("/geo/states/{state_code}/cities")
async def list_cities(state_code: str, geo: GeoService = Depends(get_geo_service)):
    cities = await geo.cities(state_code)
    return [{"id": city.id, "name": city.name} for city in cities]
