"""Listing of user-provided syslog drain service instances in a space."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol
from urllib.parse import parse_qs, urlencode, urlsplit


class Curler(Protocol):
    def curl(self, url: str, method: str, body: str) -> bytes: ...


@dataclass
class Drain:
    """A syslog drain and the apps bound to it."""

    name: str
    guid: str
    apps: list[str] = field(default_factory=list)
    app_guids: list[str] = field(default_factory=list)
    type: str = ""
    drain_url: str = ""
    use_agent: bool = False


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _drain_type(drain_url: str) -> str:
    try:
        query = urlsplit(drain_url).query
    except ValueError:
        return ""
    types = parse_qs(query, keep_blank_values=True).get("drain-type")
    return types[0] if types else "logs"


def _use_agent(drain_url: str) -> bool:
    try:
        scheme = urlsplit(drain_url).scheme
    except ValueError:
        return False
    return scheme.endswith("-v3")


def _object(resp: bytes) -> dict[str, Any]:
    data = json.loads(resp)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object in the response")
    return data


class ServiceDrainLister:
    """Finds the syslog drains of a space together with their bound apps."""

    def __init__(self, curler: Curler, app_name_batch_limit: int = 100) -> None:
        if app_name_batch_limit < 1:
            raise ValueError("app name batch limit must be at least 1")
        self._curler = curler
        self._batch_limit = app_name_batch_limit

    def drains(self, space_guid: str) -> list[Drain]:
        instances = list(
            self._v2_resources(f"/v2/user_provided_service_instances?q=space_guid:{space_guid}")
        )

        drains: list[Drain] = []
        all_guids: list[str] = []
        for instance in instances:
            entity = instance.get("entity") or {}
            drain_url = entity.get("syslog_drain_url") or ""
            if not drain_url:
                continue
            apps = self._fetch_apps(entity.get("service_bindings_url") or "")
            all_guids.extend(apps)
            drains.append(
                Drain(
                    name=entity.get("name") or "",
                    guid=(instance.get("metadata") or {}).get("guid") or "",
                    app_guids=apps,
                    type=_drain_type(drain_url),
                    drain_url=drain_url,
                    use_agent=_use_agent(drain_url),
                )
            )

        names = self._fetch_batch_app_names(all_guids)
        for drain in drains:
            guids = drain.app_guids
            drain.apps = _unique([names.get(guid, "") for guid in guids])
            drain.app_guids = _unique(guids)
        return drains

    def _v2_resources(self, url: str) -> Iterator[dict[str, Any]]:
        while url:
            page = _object(self._curler.curl(url, "GET", ""))
            yield from page.get("resources") or []
            url = page.get("next_url") or ""

    def _fetch_apps(self, url: str) -> list[str]:
        return [
            (binding.get("entity") or {}).get("app_guid") or ""
            for binding in self._v2_resources(url)
        ]

    def _fetch_batch_app_names(self, guids: list[str]) -> dict[str, str]:
        guids = _unique(guids)
        names: dict[str, str] = {}
        for start in range(0, len(guids), self._batch_limit):
            names.update(self._fetch_app_names(guids[start : start + self._batch_limit]))
        return names

    def _fetch_app_names(self, guids: list[str]) -> dict[str, str]:
        if not guids:
            return {}
        url = "/v3/apps?" + urlencode({"guids": ",".join(guids)})
        names: dict[str, str] = {}
        while url:
            page = _object(self._curler.curl(url, "GET", ""))
            for app in page.get("resources") or []:
                names[app.get("guid") or ""] = app.get("name") or ""
            url = (page.get("pagination") or {}).get("next") or ""
        return names