"""Brazilian states and municipalities from the IBGE localidades API."""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import List

import httpx

logger = logging.getLogger(__name__)

_STATE_CODE = re.compile(r"^[A-Za-z]{2}$")


@dataclass(frozen=True)
class State:
    id: int
    abbreviation: str
    name: str


@dataclass(frozen=True)
class City:
    id: int
    name: str


class GeoService:
    """Fetch the drop-down data for admin location fields. Nothing is cached."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 6.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def states(self) -> List[State]:
        payload = await self._get(f"{self._base_url}/estados")
        states = [
            State(id=int(item["id"]), abbreviation=str(item["sigla"]), name=str(item["nome"]))
            for item in payload
            if isinstance(item, dict) and {"id", "sigla", "nome"} <= item.keys()
        ]
        return sorted(states, key=lambda state: state.abbreviation)

    async def cities(self, state_code: str) -> List[City]:
        if not _STATE_CODE.match(state_code or ""):
            return []
        payload = await self._get(f"{self._base_url}/estados/{state_code.upper()}/municipios")
        cities = [
            City(id=int(item["id"]), name=str(item["nome"]))
            for item in payload
            if isinstance(item, dict) and {"id", "nome"} <= item.keys()
        ]
        return sorted(cities, key=lambda city: _collation_key(city.name))

    async def _get(self, url: str) -> list:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("Geographic lookup failed for %s: %s", url, exc)
            return []
        return payload if isinstance(payload, list) else []


def _collation_key(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
