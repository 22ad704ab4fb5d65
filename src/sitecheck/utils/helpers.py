"""Pure helper functions and the concurrency gate."""

import asyncio
import hashlib
import logging
import posixpath
import re
import time
import uuid
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Iterable, Optional, TypeVar, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

from .errors import GateClosed

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORTS = {"http": 80, "https": 443}
MAX_SLEEP_MS = 60_000
MAX_FILENAME_STEM = 80


def generate_id(prefix: str = "tr") -> str:
    """Generate a collision-resistant identifier.

    Millisecond timestamp plus a uuid4 suffix. There is no shared counter, so
    concurrent callers never contend.
    """
    return f"{prefix}-{int(time.time() * 1000):x}-{uuid.uuid4().hex}"


# ── URLs ─────────────────────────────────────────────────────────────


def normalize_url(url: str, base_url: Optional[str] = None) -> str:
    """Canonicalize a URL.

    Resolves ``url`` against ``base_url``, lowercases scheme and host, drops
    the fragment, userinfo and default ports, collapses duplicate slashes and
    removes dot segments. Non-http(s) URLs (``mailto:``, ``javascript:``) are
    returned stripped but otherwise unchanged. Idempotent.
    """
    url = (url or "").strip()
    if base_url:
        url = urljoin(base_url, url)

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return url

    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host if port in (None, DEFAULT_PORTS[scheme]) else f"{host}:{port}"

    path = re.sub(r"/{2,}", "/", parts.path or "/")
    if not path.startswith("/"):
        path = "/" + path
    trailing = path.endswith("/") or path.endswith("/.") or path.endswith("/..")
    path = posixpath.normpath(path)
    if trailing and not path.endswith("/"):
        path += "/"

    return urlunsplit((scheme, netloc, path, parts.query, ""))


def _origin(url: str):
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    try:
        port = parts.port or DEFAULT_PORTS.get(scheme)
    except ValueError:
        port = None
    return scheme, (parts.hostname or "").lower(), port


def is_internal_url(url: str, base_url: str) -> bool:
    """Return True if ``url`` is same-origin with ``base_url``.

    Relative URLs are resolved against ``base_url`` first.
    """
    normalized = normalize_url(url, base_url)
    scheme, host, port = _origin(normalized)
    if scheme not in DEFAULT_PORTS or not host:
        return False
    return (scheme, host, port) == _origin(normalize_url(base_url))


def is_allowed_host(url: str, allowed_hosts: Iterable[str]) -> bool:
    """Return True if the host of ``url`` is in, or a subdomain of, the allow-list."""
    host = (urlsplit(url).hostname or "").lower()
    if not host:
        return False
    for allowed in allowed_hosts:
        allowed = allowed.lower().lstrip(".")
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


# ── Filesystem ───────────────────────────────────────────────────────


def to_safe_filename(*parts: Any) -> str:
    """Derive a deterministic, filesystem-safe name from identity parts.

    The readable slug may collapse distinct inputs, so a short hash of the
    raw joined input is appended.
    """
    raw = "|".join(str(getattr(part, "value", part)) for part in parts)
    slug = re.sub(r"^[a-z]+://", "", raw.lower())
    slug = re.sub(r"[^a-z0-9._-]+", "-", slug).strip("-.")
    slug = re.sub(r"-{2,}", "-", slug)[:MAX_FILENAME_STEM].rstrip("-.") or "root"
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]
    return f"{slug}-{digest}"


def ensure_dir(path: Union[str, Path]) -> Path:
    """Create ``path`` (and parents) if absent. No error if it already exists."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ── Async primitives ─────────────────────────────────────────────────


async def sleep(ms: float) -> None:
    """Cooperative delay, clamped to ``[0, MAX_SLEEP_MS]`` milliseconds."""
    ms = min(max(ms, 0), MAX_SLEEP_MS)
    await asyncio.sleep(ms / 1000)


class ParallelLimit:
    """Concurrency gate admitting at most ``limit`` units at a time.

    Waiters are admitted in submission order. A slot is released exactly when
    an admitted unit completes, whether it succeeded or raised. After
    :meth:`close`, queued and future waiters get :class:`GateClosed` while
    admitted units run to completion.

    Example:
        gate = ParallelLimit(2)
        async with gate:
            await do_work()
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        self.limit = limit
        self._waiters: Deque[asyncio.Future] = deque()
        self._active = 0
        self._closed = False

        # Instrumentation
        self.admitted = 0
        self.max_active = 0
        self.rejected = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def _admit(self) -> None:
        self._active += 1
        self.admitted += 1
        self.max_active = max(self.max_active, self._active)

    async def acquire(self) -> None:
        """Wait for a slot.

        Raises:
            GateClosed: If the gate is closed before a slot was granted
        """
        if self._closed:
            self.rejected += 1
            raise GateClosed("concurrency gate is closed")

        if self._active < self.limit and not self._waiters:
            self._admit()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except GateClosed:
            self.rejected += 1
            raise
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Slot was handed over just before cancellation; give it back
                self.release()
            raise
        finally:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass

    def release(self) -> None:
        """Free a slot and hand it to the oldest waiter."""
        if self._active <= 0:
            raise RuntimeError("release() called more times than acquire()")
        self._active -= 1
        self._wake()

    def _wake(self) -> None:
        while self._waiters and self._active < self.limit:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._admit()
            waiter.set_result(None)

    def close(self) -> None:
        """Stop admitting. Queued waiters are rejected with GateClosed."""
        if self._closed:
            return
        self._closed = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(GateClosed("concurrency gate closed while waiting"))
        logger.debug("Concurrency gate closed")

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn()`` inside a slot."""
        async with self:
            return await fn()

    async def __aenter__(self) -> "ParallelLimit":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def parallel_limit(n: int) -> ParallelLimit:
    """Create a concurrency gate admitting at most ``n`` units."""
    return ParallelLimit(n)
