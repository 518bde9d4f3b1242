from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import httpx

from preload.errors import FetchFailed

logger = logging.getLogger(__name__)


class AudioFetcher(Protocol):
    async def fetch(self, stimulus_id: int) -> bytes:
        ...


@dataclass
class HttpFetcherConfig:
    base_url: Optional[str] = None  # e.g., https://experiment.example.org
    suffix: str = "wav"
    timeout: Optional[float] = None  # no per-load timeout unless asked for


class HttpAudioFetcher(AudioFetcher):
    """
    Fetches `{base_url}/audio/{id}.{suffix}` over HTTP.
    Any non-2xx status or transport error becomes FetchFailed; there is no retry.
    """

    def __init__(self, config: Optional[HttpFetcherConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or HttpFetcherConfig()
        self.base_url = (self.config.base_url or os.getenv("EXPERIMENT_AUDIO_URL") or "").rstrip("/")
        if not self.base_url:
            raise RuntimeError("Audio base_url is not configured (set EXPERIMENT_AUDIO_URL).")
        self._client = client
        self._owns_client = client is None

    def url_for(self, stimulus_id: int) -> str:
        return f"{self.base_url}/audio/{stimulus_id}.{self.config.suffix}"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def fetch(self, stimulus_id: int) -> bytes:
        client = self._ensure_client()
        url = self.url_for(stimulus_id)
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            raise FetchFailed(stimulus_id, f"{type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise FetchFailed(
                stimulus_id,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.content

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class FileAudioFetcher(AudioFetcher):
    """Reads `{root}/{id}.{suffix}` from local disk."""

    def __init__(self, root: str | Path, suffix: str = "wav"):
        self.root = Path(root)
        self.suffix = suffix

    def path_for(self, stimulus_id: int) -> Path:
        return self.root / f"{stimulus_id}.{self.suffix}"

    async def fetch(self, stimulus_id: int) -> bytes:
        path = self.path_for(stimulus_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise FetchFailed(stimulus_id, str(exc)) from exc


class CachingFetcher(AudioFetcher):
    """
    Offline cache in front of another fetcher.

    Hits are served from `cache_dir`; misses go to the inner fetcher and only
    successful payloads are written back, so failures propagate unchanged.
    Entries are written to a `.part` file and renamed into place, and an
    unreadable or empty entry counts as a miss.
    """

    def __init__(self, inner: AudioFetcher, cache_dir: str | Path, suffix: str = "wav"):
        self.inner = inner
        self.cache_dir = Path(cache_dir)
        self.suffix = suffix
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.hits = 0
        self.misses = 0

    def _path(self, stimulus_id: int) -> Path:
        return self.cache_dir / f"{stimulus_id}.{self.suffix}"

    async def _read_cached(self, stimulus_id: int) -> Optional[bytes]:
        path = self._path(stimulus_id)
        if not path.exists():
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.warning("Unreadable cache entry %s: %s", path, exc)
            return None

    def _store(self, stimulus_id: int, data: bytes) -> None:
        path = self._path(stimulus_id)
        part = path.with_name(path.name + ".part")
        part.write_bytes(data)
        os.replace(part, path)

    async def fetch(self, stimulus_id: int) -> bytes:
        cached = await self._read_cached(stimulus_id)
        if cached:
            self.hits += 1
            logger.debug("Cache HIT: stimulus %s", stimulus_id)
            return cached
        self.misses += 1
        logger.debug("Cache MISS: stimulus %s, fetching...", stimulus_id)
        data = await self.inner.fetch(stimulus_id)
        try:
            await asyncio.to_thread(self._store, stimulus_id, data)
        except OSError as exc:
            logger.warning("Could not cache stimulus %s: %s", stimulus_id, exc)
        return data

    async def aclose(self) -> None:
        close = getattr(self.inner, "aclose", None)
        if close is not None:
            await close()
