"""Discovery of the apps and service instances whose logs are forwarded."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

log = logging.getLogger(__name__)


class SourceProviderError(Exception):
    """Raised when the list of sources cannot be obtained."""


@dataclass(frozen=True)
class Resource:
    """An app or service instance identified by its GUID."""

    guid: str = ""
    name: str = ""


class _Response(Protocol):
    status_code: int
    content: bytes


class Getter(Protocol):
    def get(self, url: str) -> _Response: ...


def _decode(content: bytes | str) -> Any:
    try:
        return json.loads(content)
    except ValueError as err:
        raise SourceProviderError(f"invalid JSON from cc api: {err}") from err


def _resource(raw: Any) -> Resource:
    if not isinstance(raw, dict):
        raise SourceProviderError("expected a JSON object describing a resource")
    return Resource(guid=raw.get("guid") or "", name=raw.get("name") or "")


class SingleOrSpaceProvider:
    """Provides either one source, or every app (and optionally service) of a space."""

    def __init__(
        self,
        source_id: str,
        api_addr: str,
        space_guid: str,
        include_services: bool,
        *,
        http_client: Getter | None = None,
        exclude_filter: Callable[[str], bool] | None = None,
    ) -> None:
        if http_client is None:
            import requests

            http_client = requests.Session()
        self.source = source_id
        self.api_addr = api_addr
        self.space_guid = space_guid
        self.include_services = include_services
        self._http = http_client
        self._exclude = exclude_filter or (lambda _guid: False)

    def resources(self) -> list[Resource]:
        if self.source:
            return self._single()
        return self._space()

    def _single(self) -> list[Resource]:
        resp = self._http.get(f"{self.api_addr}/v3/apps/{self.source}")
        if resp.status_code != 200:
            for resource in self._fetch("service_instances"):
                if resource.guid == self.source:
                    return [resource]
        return [_resource(_decode(resp.content))]

    def _space(self) -> list[Resource]:
        services = self._fetch("service_instances") if self.include_services else []
        apps = self._fetch("apps")
        return [r for r in services + apps if not self._exclude(r.guid)]

    def _fetch(self, kind: str) -> list[Resource]:
        url = f"{self.api_addr}/v3/{kind}?space_guids={self.space_guid}"
        try:
            resp = self._http.get(url)
        except Exception as err:
            log.error("failed to make capi request: %s", err)
            raise
        if resp.status_code != 200:
            log.error("unexpected status code from cc api: %d", resp.status_code)
            raise SourceProviderError(
                f"unexpected status code from cc api: {resp.status_code}"
            )
        data = _decode(resp.content)
        if not isinstance(data, dict):
            raise SourceProviderError("expected a JSON object from cc api")
        return [_resource(item) for item in data.get("resources") or []]