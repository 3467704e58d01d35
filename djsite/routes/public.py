"""Public endpoints: contact form and preload progress."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from djsite.dependencies import get_preloads, get_section_service
from djsite.schemas import ContactPayload
from djsite.services.preload import PreloadRegistry, ProgressUpdate
from djsite.services.sections import SectionDataService

router = APIRouter(tags=["public"])

logger = logging.getLogger(__name__)

_READY = ProgressUpdate(100, "Ready!")


@router.post("/contact", status_code=201)
async def submit_contact(
    payload: ContactPayload,
    sections: SectionDataService = Depends(get_section_service),
) -> dict[str, str]:
    message = await sections.submit_contact(payload)
    return {"status": "sent", "id": message.id}


@router.get("/preload/status")
async def preload_status(
    load: str | None = Query(default=None),
    preloads: PreloadRegistry = Depends(get_preloads),
) -> JSONResponse:
    page_load = preloads.get(load)
    update = page_load.coordinator.latest if page_load else _READY
    return JSONResponse(_progress_payload(update))


@router.get("/preload/progress", name="stream_preload_progress")
async def stream_preload_progress(
    load: str | None = Query(default=None),
    preloads: PreloadRegistry = Depends(get_preloads),
):
    """Stream one page load's preload progress.

    Unknown or expired tokens get a single ``complete`` event so the loading
    screen never waits on a preload that is gone.
    """
    page_load = preloads.get(load)

    async def event_generator():
        if page_load is None:
            yield {"event": "complete", "data": json.dumps(_progress_payload(_READY))}
            return
        try:
            async for update in page_load.coordinator.watch():
                event = "complete" if update.complete else "progress"
                yield {"event": event, "data": json.dumps(_progress_payload(update))}
        except Exception as exc:  # pragma: no cover
            logger.exception("Failed to stream preload progress: %s", exc)
            yield {"event": "complete", "data": json.dumps(_progress_payload(_READY))}

    return EventSourceResponse(event_generator())


def _progress_payload(update: ProgressUpdate) -> dict[str, object]:
    return {"percent": update.percent, "label": update.label}
