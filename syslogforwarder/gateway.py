"""Client for the log stream gateway, reading envelope batches over SSE."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

import requests

from .envelope import Envelope, batch_from_json

EnvelopeStream = Callable[[], Optional[list[Envelope]]]

_IGNORED_EVENTS = frozenset({"heartbeat", "closing"})


@dataclass(frozen=True)
class Selector:
    """Selects one kind of envelope ("log", "gauge", "counter", ...) of a source."""

    source_id: str
    kind: str


@dataclass
class EgressBatchRequest:
    shard_id: str = ""
    selectors: list[Selector] = field(default_factory=list)


def selectors_for_source(source_id: str) -> list[Selector]:
    """Selectors for the logs, gauges and counters of one source."""
    return [
        Selector(source_id, "log"),
        Selector(source_id, "gauge"),
        Selector(source_id, "counter"),
    ]


def _query(request: EgressBatchRequest) -> list[tuple[str, str]]:
    params = [("shard_id", request.shard_id)]
    seen_sources: set[str] = set()
    seen_kinds: set[str] = set()
    for selector in request.selectors:
        if selector.source_id and selector.source_id not in seen_sources:
            seen_sources.add(selector.source_id)
            params.append(("source_id", selector.source_id))
        if selector.kind not in seen_kinds:
            seen_kinds.add(selector.kind)
            params.append((selector.kind, ""))
    return params


class _EnvelopeStream:
    """Callable returning the next batch, or None once cancelled."""

    def __init__(
        self,
        client: RLPGatewayClient,
        request: EgressBatchRequest,
        cancelled: threading.Event | None,
    ) -> None:
        self._client = client
        self._request = request
        self._cancelled = cancelled or threading.Event()
        self._lock = threading.Lock()
        self._resp: Any = None
        self._lines: Iterator[Any] | None = None
        if cancelled is not None:
            threading.Thread(target=self._watch, daemon=True).start()

    def _watch(self) -> None:
        self._cancelled.wait()
        self._close()

    def _close(self) -> None:
        with self._lock:
            resp, self._resp, self._lines = self._resp, None, None
        if resp is not None:
            try:
                resp.close()
            except Exception:
                pass

    def _connect(self) -> bool:
        client = self._client
        try:
            resp = client.session.get(
                f"{client.addr}/v2/read",
                params=_query(self._request),
                stream=True,
                timeout=(client.connect_timeout, None),
            )
        except (requests.RequestException, OSError) as err:
            client.log.warning("failed to connect to gateway: %s", err)
            return False
        if resp.status_code != 200:
            client.log.warning("unexpected status code from gateway: %d", resp.status_code)
            resp.close()
            return False
        with self._lock:
            self._resp = resp
            self._lines = iter(resp.iter_lines(chunk_size=None))
        return True

    def _next_event(self) -> tuple[str, str] | None:
        event = ""
        data: list[str] = []
        while True:
            with self._lock:
                lines = self._lines
            if lines is None:
                return None
            raw = next(lines, None)
            if raw is None:
                return None
            line = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
            if not line:
                if data or event:
                    return event, "\n".join(data)
                continue
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event = value
            elif name == "data":
                data.append(value)

    def __call__(self) -> list[Envelope] | None:
        while not self._cancelled.is_set():
            with self._lock:
                connected = self._lines is not None
            if not connected and not self._connect():
                self._cancelled.wait(self._client.retry_delay)
                continue
            try:
                event = self._next_event()
            except Exception as err:
                if not self._cancelled.is_set():
                    self._client.log.warning("error reading from gateway: %s", err)
                self._close()
                continue
            if event is None:
                self._close()
                self._cancelled.wait(self._client.retry_delay)
                continue
            name, data = event
            if name in _IGNORED_EVENTS or not data:
                continue
            try:
                return batch_from_json(data)
            except ValueError as err:
                self._client.log.warning("failed to decode envelope batch: %s", err)
        return None


class RLPGatewayClient:
    """Opens envelope streams against the log stream gateway."""

    def __init__(
        self,
        addr: str,
        *,
        session: Any = None,
        logger: logging.Logger | None = None,
        retry_delay: float = 1.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self.addr = addr.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.log = logger or logging.getLogger(__name__)
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout

    def stream(
        self, request: EgressBatchRequest, cancelled: threading.Event | None = None
    ) -> EnvelopeStream:
        """Return a function yielding batches until ``cancelled`` is set."""
        return _EnvelopeStream(self, request, cancelled)