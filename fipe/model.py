"""Batch lookup of FIPE vehicle prices against a remote pricing API."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar
import json
import logging
import threading
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .codes import NoValidCodesError, collect_codes
from .config import DEFAULT_BASE_URL, DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "FIPE lookup failed"

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class HttpResponse:
    """Status and raw body of one upstream response."""

    status: int
    body: str


@dataclass(frozen=True)
class LookupResult:
    """Outcome of resolving a single FIPE code.

    Successful lookups carry ``data`` and no ``error``; failed lookups carry
    ``status`` (``0`` for transport failures) and ``error`` but no ``data``.
    Use :meth:`success` and :meth:`failure` rather than the constructor.
    """

    code: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None
    data: Any = None

    @classmethod
    def success(cls, code: str, data: Any) -> "LookupResult":
        return cls(code=code, ok=True, data=data)

    @classmethod
    def failure(cls, code: str, status: int, message: str) -> "LookupResult":
        return cls(code=code, ok=False, status=status, error=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"code": self.code, "ok": True, "data": self.data}
        return {"code": self.code, "ok": False, "status": self.status, "error": self.error}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LookupResult":
        """Rebuild a result from its :meth:`to_dict` shape."""

        if not isinstance(payload, dict):
            raise ValueError("Each result must be an object.")
        code = str(payload.get("code", "")).strip()
        if not code:
            raise ValueError("Each result must include a 'code'.")
        if payload.get("ok"):
            return cls.success(code, payload.get("data"))
        status = payload.get("status")
        try:
            status_value = int(status) if status is not None else 0
        except (TypeError, ValueError):
            status_value = 0
        return cls.failure(code, status_value, str(payload.get("error") or ""))


HttpGet = Callable[[str, float], HttpResponse]


class FipeLookupModel:
    """Resolves batches of FIPE codes with a bounded number of parallel requests."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
        http_get: Optional[HttpGet] = None,
    ) -> None:
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency <= 0:
            raise ValueError("concurrency must be a positive integer")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.base_url = base_url.rstrip("/")
        self.concurrency = concurrency
        self.timeout = timeout
        self._http_get = http_get or _default_http_get

    def close(self) -> None:
        """Provided for API compatibility; no persistent connections are kept."""
        return None

    def batch_lookup(self, codes: object = None, text: Optional[str] = None) -> List[LookupResult]:
        """Normalise, deduplicate and resolve the codes found in ``codes`` and ``text``.

        Raises :class:`NoValidCodesError` before any request is made when
        nothing valid remains.
        """

        unique_codes = collect_codes(codes, text)
        if not unique_codes:
            raise NoValidCodesError()

        logger.info("Looking up %d FIPE code(s) with concurrency %d", len(unique_codes), self.concurrency)
        results = self.fetch_all(unique_codes)
        ok_count = sum(1 for result in results if result.ok)
        logger.info("FIPE batch finished: %d of %d code(s) returned data", ok_count, len(results))
        return results

    def fetch_all(self, codes: Sequence[str]) -> List[LookupResult]:
        """Look up every code, returning results in the same order as ``codes``."""

        return map_with_limit(codes, self.concurrency, self.lookup)

    def lookup(self, code: str) -> LookupResult:
        """Resolve one code. Failures are returned as results, never raised."""

        url = f"{self.base_url}/{quote(code, safe='')}"
        try:
            response = self._http_get(url, self.timeout)
        except Exception as exc:  # noqa: BLE001 - any transport failure is per-item
            message = str(exc) or type(exc).__name__
            logger.warning("Transport failure for FIPE code %s: %s", code, message)
            return LookupResult.failure(code, 0, message)

        if not 200 <= response.status < 300:
            message = response.body.strip() or DEFAULT_ERROR_MESSAGE
            logger.warning("Upstream returned HTTP %d for FIPE code %s", response.status, code)
            return LookupResult.failure(code, response.status, message)

        try:
            data = json.loads(response.body)
        except (ValueError, RecursionError) as exc:
            logger.warning("Invalid JSON payload for FIPE code %s: %s", code, exc)
            return LookupResult.failure(code, 0, f"Failed to decode JSON payload: {exc}")

        logger.debug("FIPE code %s resolved", code)
        return LookupResult.success(code, data)


def map_with_limit(items: Sequence[T], limit: int, mapper: Callable[[T], R]) -> List[R]:
    """Apply ``mapper`` to ``items`` using at most ``limit`` concurrent workers.

    Workers share a cursor local to this call and claim indices one at a time,
    so each item is mapped exactly once and ``result[i]`` always belongs to
    ``items[i]`` regardless of completion order. If ``mapper`` raises, the
    remaining items still run and the first exception is re-raised afterwards.
    """

    if limit <= 0:
        raise ValueError("limit must be a positive integer")
    if not items:
        return []

    results: List[Any] = [None] * len(items)
    cursor = 0
    cursor_lock = threading.Lock()

    def claim() -> Optional[int]:
        nonlocal cursor
        with cursor_lock:
            if cursor >= len(items):
                return None
            index = cursor
            cursor += 1
            return index

    def worker() -> None:
        first_error: Optional[BaseException] = None
        while True:
            index = claim()
            if index is None:
                break
            try:
                results[index] = mapper(items[index])
            except Exception as exc:  # noqa: BLE001 - re-raised once the batch completes
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    worker_count = min(limit, len(items))
    with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="fipe-lookup") as executor:
        futures = [executor.submit(worker) for _ in range(worker_count)]
    for future in futures:
        future.result()
    return results


def _default_http_get(url: str, timeout: float) -> HttpResponse:
    request = Request(url, headers={"Accept": "application/json"})
    try:
        with urlopen(request, timeout=timeout) as response:
            charset = response.headers.get_content_charset() or "utf-8"
            return HttpResponse(status=response.status, body=response.read().decode(charset, errors="replace"))
    except HTTPError as exc:
        charset = exc.headers.get_content_charset() if exc.headers else None
        try:
            body = exc.read().decode(charset or "utf-8", errors="replace")
        except OSError:
            body = ""
        return HttpResponse(status=exc.code, body=body)
    except (URLError, OSError) as exc:
        reason = getattr(exc, "reason", None) or exc
        raise RemoteLookupError(str(reason)) from exc


class RemoteLookupError(RuntimeError):
    """Raised when the remote price API cannot be reached."""


__all__ = [
    "FipeLookupModel",
    "HttpResponse",
    "LookupResult",
    "RemoteLookupError",
    "map_with_limit",
]
