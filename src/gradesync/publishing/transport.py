"""Posting export batches to the SIS endpoint.

Two layers:

1. ``SisPoster``: a structural Protocol.  Anything with a matching
   ``post()`` can be handed to the orchestrator (tests use plain fakes).

2. ``BasePoster``: an abstract base whose public ``post()`` wraps the
   subclass's ``_do_post()`` with trace logging, so every successful post
   shows up in the audit trail as ``batch_posted``.

Each batch is posted exactly once.  Retrying is the caller's decision.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable, TYPE_CHECKING

import requests

from ..errors import SisTransportError

if TYPE_CHECKING:
    from ..logging import TraceLogger


@runtime_checkable
class SisPoster(Protocol):
    def post(
        self,
        url: str,
        payload: str | bytes,
        mime_type: str | None,
        headers: dict[str, str] | None = None,
    ) -> None:
        ...


class BasePoster(ABC):
    """Abstract poster with automatic ``batch_posted`` trace events.

    Subclass this and implement ``_do_post()``; raise
    :class:`SisTransportError` on failure.
    """

    def __init__(self, trace: "TraceLogger | None" = None):
        self.trace = trace

    # ------------------------------------------------------------------
    # Public API - do NOT override
    # ------------------------------------------------------------------

    def post(
        self,
        url: str,
        payload: str | bytes,
        mime_type: str | None,
        headers: dict[str, str] | None = None,
    ) -> None:
        headers = dict(headers or {})
        start = time.monotonic()
        self._do_post(url, payload, mime_type, headers)

        if self.trace:
            self.trace.log(
                "batch_posted",
                url=url,
                mime_type=mime_type,
                size=len(payload),
                headers=sorted(headers),
                latency_ms=int((time.monotonic() - start) * 1000),
            )

    # ------------------------------------------------------------------
    # Subclass contract
    # ------------------------------------------------------------------

    @abstractmethod
    def _do_post(
        self,
        url: str,
        payload: str | bytes,
        mime_type: str | None,
        headers: dict[str, str],
    ) -> None:
        ...


class HttpSisPoster(BasePoster):
    """POSTs batches over HTTP(S) with a shared ``requests.Session``."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        trace: "TraceLogger | None" = None,
    ):
        super().__init__(trace=trace)
        self.session = session or requests.Session()
        self.timeout = timeout

    def _do_post(self, url, payload, mime_type, headers):
        request_headers = dict(headers)
        if mime_type:
            request_headers.setdefault("Content-Type", mime_type)
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        try:
            response = self.session.post(
                url,
                data=payload,
                headers=request_headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise SisTransportError(f"{url} returned HTTP {status}", status_code=status) from e
        except requests.RequestException as e:
            raise SisTransportError(f"posting to {url} failed: {e}") from e

    def close(self) -> None:
        self.session.close()


class DirectoryPoster(BasePoster):
    """Writes each batch to a numbered file instead of posting it.

    Useful for dry runs: ``batch_0001.csv``, ``batch_0002.csv``, ...
    """

    _EXTENSIONS = {"text/csv": ".csv", "application/json": ".json", "text/plain": ".txt"}

    def __init__(self, output_dir: Path | str, trace: "TraceLogger | None" = None):
        super().__init__(trace=trace)
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.written: list[Path] = []

    def _do_post(self, url, payload, mime_type, headers):
        suffix = self._EXTENSIONS.get(mime_type or "", ".bin")
        path = self.output_dir / f"batch_{len(self.written) + 1:04d}{suffix}"
        if isinstance(payload, str):
            path.write_text(payload)
        else:
            path.write_bytes(payload)
        self.written.append(path)
