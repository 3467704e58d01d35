"""Page-load content preloading with progress reporting.

A coordinator runs once per full page load. It fetches the site settings and the
published photos, videos and events, freezes them into a ``SnapshotBundle`` and
publishes the bundle through a one-shot ``SnapshotCell``. The sections of that
page read the cell opportunistically and fall back to their own queries while
it is empty. Each page load opens its own coordinator through
``PreloadRegistry``, so the frozen view is never older than the page showing it.

Progress is reported as ``ProgressUpdate`` values that never decrease and always
finish at 100, whatever fails along the way.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

import httpx

from djsite.schemas import EventRecord, PhotoRecord, VideoRecord
from djsite.services.content import ContentReader, FetchResult, guarded
from djsite.services.gateway import DataGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WARM_PHOTO_COUNT = 6
_WARM_THUMBNAIL_COUNT = 3


@dataclass(frozen=True)
class ProgressUpdate:
    percent: int
    label: str

    @property
    def complete(self) -> bool:
        return self.percent >= 100


@dataclass(frozen=True)
class SnapshotBundle:
    """Immutable result of one page load's reads."""

    settings: Mapping[str, str]
    photos: Tuple[PhotoRecord, ...]
    videos: Tuple[VideoRecord, ...]
    events: Tuple[EventRecord, ...]
    loaded_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


class SnapshotCell(Generic[T]):
    """Write-once slot: single writer, any number of readers.

    ``set`` may be called from any thread; a waiter on an event loop is woken
    through that loop.
    """

    def __init__(self) -> None:
        self._value: T | None = None
        self._is_set = False
        self._lock = threading.Lock()
        self._ready = asyncio.Event()
        self._waiting_loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_set(self) -> bool:
        return self._is_set

    def set(self, value: T) -> None:
        with self._lock:
            if self._is_set:
                raise RuntimeError("Snapshot already published")
            self._value = value
            self._is_set = True
            loop = self._waiting_loop
        if loop is None or loop.is_closed() or _running_loop() is loop:
            self._ready.set()
        else:
            loop.call_soon_threadsafe(self._ready.set)

    def get(self) -> T | None:
        """Return the published value, or ``None`` while unset."""

        return self._value if self._is_set else None

    async def wait(self, timeout: float | None = None) -> T | None:
        with self._lock:
            if self._is_set:
                return self._value
            self._waiting_loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.get()


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


ReadinessHook = Callable[[], Awaitable[None]]
ImageFetcher = Callable[[str], Awaitable[None]]


async def fetch_image(url: str) -> None:
    """Request an image so the storage CDN has it warm."""

    async with httpx.AsyncClient(follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()


class PreloadCoordinator:
    """Run the content fetch for one page load and report its progress."""

    def __init__(
        self,
        gateway: DataGateway | None,
        *,
        readiness: ReadinessHook | None = None,
        image_fetcher: ImageFetcher | None = fetch_image,
        readiness_timeout: float = 2.0,
        image_timeout: float = 3.0,
        settle_delay: float = 0.3,
        photo_limit: int = 12,
        video_limit: int = 6,
        event_limit: int = 10,
    ) -> None:
        self._reader = ContentReader(gateway)
        self._readiness = readiness
        self._image_fetcher = image_fetcher
        self._readiness_timeout = readiness_timeout
        self._image_timeout = image_timeout
        self._settle_delay = settle_delay
        self._photo_limit = photo_limit
        self._video_limit = video_limit
        self._event_limit = event_limit

        self._cell: SnapshotCell[SnapshotBundle] = SnapshotCell()
        self._content_ready = asyncio.Event()
        self._started = False
        self._task: asyncio.Task[None] | None = None
        self._history: List[ProgressUpdate] = []
        self._listeners: List[asyncio.Queue[ProgressUpdate]] = []

    def snapshot(self) -> SnapshotBundle | None:
        """Return the frozen bundle, or ``None`` before it is published."""

        return self._cell.get()

    async def wait_for_snapshot(self, timeout: float | None = None) -> SnapshotBundle | None:
        """Wait until the content reads have settled, then return ``snapshot()``.

        Offline and failed runs settle without a bundle, so this returns ``None``
        for them instead of waiting out the timeout.
        """

        try:
            await asyncio.wait_for(self._content_ready.wait(), timeout)
        except asyncio.TimeoutError:
            logger.info("Preload snapshot not ready within %.1fs", timeout or 0)
        return self.snapshot()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def interrupted(self) -> bool:
        """The background run ended, or can no longer run, before reaching 100."""

        task = self._task
        if task is None or (self._history and self._history[-1].complete):
            return False
        return task.done() or task.get_loop().is_closed()

    @property
    def latest(self) -> ProgressUpdate:
        return self._history[-1] if self._history else ProgressUpdate(0, "Starting...")

    @property
    def history(self) -> Tuple[ProgressUpdate, ...]:
        return tuple(self._history)

    def start(self) -> asyncio.Task[None]:
        """Drive ``run()`` in a background task on the running loop."""

        if self._task is None:
            self._task = asyncio.create_task(self._drain(), name="content-preload")
        return self._task

    def cancel(self) -> bool:
        task = self._task
        if task is None or task.done() or task.get_loop().is_closed():
            return False
        task.cancel()
        return True

    async def stop(self) -> None:
        if self.cancel():
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def run(self) -> AsyncIterator[ProgressUpdate]:
        if self._started:
            raise RuntimeError("Preload has already run")
        self._started = True

        try:
            async for update in self._steps():
                yield update
        except Exception:  # noqa: BLE001 - the loading screen must always resolve
            logger.exception("Content preload failed; continuing without it")
        self._content_ready.set()
        yield self._record(100, "Ready!")

    async def watch(self) -> AsyncIterator[ProgressUpdate]:
        """Replay recorded progress, then follow live updates until 100."""

        queue: asyncio.Queue[ProgressUpdate] = asyncio.Queue()
        for update in self._history:
            queue.put_nowait(update)
        if self._history and self._history[-1].complete:
            while not queue.empty():
                yield queue.get_nowait()
            return
        if self.interrupted:
            while not queue.empty():
                yield queue.get_nowait()
            yield ProgressUpdate(100, "Ready!")
            return

        self._listeners.append(queue)
        try:
            while True:
                update = await queue.get()
                yield update
                if update.complete:
                    return
        finally:
            self._listeners.remove(queue)

    async def _drain(self) -> None:
        async for update in self.run():
            logger.debug("Preload %s%% %s", update.percent, update.label)

    async def _steps(self) -> AsyncIterator[ProgressUpdate]:
        yield self._record(5, "Preparing templates...")
        await self._await_readiness()
        yield self._record(15, "Templates ready")

        if not self._reader.configured:
            yield self._record(70, "Offline mode")
        else:
            yield self._record(20, "Connecting to the server...")
            async for update in self._load_content():
                yield update
            yield self._record(70, "Content loaded")
        self._content_ready.set()

        yield self._record(75, "Preparing images...")
        await self._warm_images()
        yield self._record(90, "Images ready")

        yield self._record(95, "Finishing...")
        await asyncio.sleep(self._settle_delay)

    async def _await_readiness(self) -> None:
        if self._readiness is None:
            return
        try:
            await asyncio.wait_for(self._readiness(), self._readiness_timeout)
        except asyncio.TimeoutError:
            logger.info("Readiness check exceeded %.1fs; continuing", self._readiness_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Readiness check failed: %s", exc)

    async def _load_content(self) -> AsyncIterator[ProgressUpdate]:
        reads: Dict[str, Callable[[], Awaitable[FetchResult]]] = {
            "settings": self._reader.site_settings,
            "photos": lambda: self._reader.published_photos(self._photo_limit),
            "videos": lambda: self._reader.published_videos(self._video_limit),
            "events": lambda: self._reader.published_events(self._event_limit),
        }
        empties = {"settings": {}, "photos": [], "videos": [], "events": []}

        async def tagged(name: str) -> Tuple[str, FetchResult]:
            fallback = FetchResult.failed(empties[name], "unexpected failure")
            return name, await guarded(f"Preloading {name}", reads[name], fallback)

        results: Dict[str, FetchResult] = {}
        tasks = [asyncio.create_task(tagged(name)) for name in reads]
        try:
            for finished in asyncio.as_completed(tasks):
                name, result = await finished
                results[name] = result
                percent = 20 + (40 * len(results)) // len(reads)
                yield self._record(percent, f"Loaded {name}")
        finally:
            for task in tasks:
                task.cancel()

        bundle = SnapshotBundle(
            settings=MappingProxyType(dict(results["settings"].value)),
            photos=tuple(results["photos"].value),
            videos=tuple(results["videos"].value),
            events=tuple(results["events"].value),
        )
        self._cell.set(bundle)

    async def _warm_images(self) -> None:
        bundle = self._cell.get()
        if bundle is None or self._image_fetcher is None:
            return
        urls = [photo.url for photo in bundle.photos[:_WARM_PHOTO_COUNT] if photo.url]
        urls += [
            video.thumbnail_url
            for video in bundle.videos[:_WARM_THUMBNAIL_COUNT]
            if video.thumbnail_url
        ]
        if not urls:
            return
        await asyncio.gather(*(self._warm_one(url) for url in urls))

    async def _warm_one(self, url: str) -> None:
        try:
            await asyncio.wait_for(self._image_fetcher(url), self._image_timeout)
        except asyncio.TimeoutError:
            logger.debug("Image warm-up timed out for %s", url)
        except Exception as exc:  # noqa: BLE001 - warming is best effort
            logger.debug("Image warm-up failed for %s: %s", url, exc)

    def _record(self, percent: int, label: str) -> ProgressUpdate:
        floor = self._history[-1].percent if self._history else 0
        update = ProgressUpdate(max(floor, min(percent, 100)), label)
        self._history.append(update)
        for queue in self._listeners:
            queue.put_nowait(update)
        return update


CoordinatorFactory = Callable[[Optional[DataGateway]], PreloadCoordinator]


@dataclass(frozen=True)
class PageLoad:
    token: str
    coordinator: PreloadCoordinator
    opened_at: float


class PreloadRegistry:
    """Coordinators keyed by the page-load token the rendered page carries.

    Every full page load opens a new coordinator, so the snapshot it reads is
    taken for that load and nothing carries over to the next one. Old loads are
    forgotten after ``ttl`` seconds or once ``max_loads`` are held.
    """

    def __init__(
        self,
        factory: CoordinatorFactory,
        *,
        ttl: float = 600.0,
        max_loads: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._ttl = ttl
        self._max_loads = max(1, max_loads)
        self._clock = clock
        self._loads: "OrderedDict[str, PageLoad]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._loads)

    def open(self, gateway: DataGateway | None) -> PageLoad:
        """Start the preload for a new page load on the running loop."""

        self._prune(room=1)
        load = PageLoad(secrets.token_urlsafe(16), self._factory(gateway), self._clock())
        self._loads[load.token] = load
        load.coordinator.start()
        return load

    def get(self, token: str | None) -> PageLoad | None:
        self._prune()
        if not token:
            return None
        return self._loads.get(token)

    async def close(self) -> None:
        loads = list(self._loads.values())
        self._loads.clear()
        for load in loads:
            await load.coordinator.stop()

    def _prune(self, room: int = 0) -> None:
        cutoff = self._clock() - self._ttl
        while self._loads:
            oldest = next(iter(self._loads.values()))
            if oldest.opened_at > cutoff and len(self._loads) + room <= self._max_loads:
                break
            self._loads.popitem(last=False)
            oldest.coordinator.cancel()
