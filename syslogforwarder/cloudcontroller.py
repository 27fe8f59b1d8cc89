"""Clients for the cloud controller API."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol


class CloudControllerError(Exception):
    """Raised when a cloud controller request fails."""


class UnexpectedStatusError(CloudControllerError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status_code: int, body: bytes = b"") -> None:
        self.status_code = status_code
        self.body = body
        if status_code == 401:
            message = "unexpected status code 401"
        else:
            message = f"unexpected status code {status_code}: {body.decode('utf-8', 'replace')}"
        super().__init__(message)


class Curler(Protocol):
    def curl(self, url: str, method: str, body: str) -> bytes: ...


@dataclass(frozen=True)
class App:
    name: str
    guid: str


def _get(obj: Any, key: str) -> Any:
    """Case-insensitive lookup in a JSON object."""
    if not isinstance(obj, dict):
        return None
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for k, v in obj.items():
        if k.lower() == lowered:
            return v
    return None


class AppListerClient:
    def __init__(self, curler: Curler) -> None:
        self._curler = curler

    def list_apps(self, space_guid: str) -> list[App]:
        resp = self._curler.curl(f"/v2/apps?q=space_guid:{space_guid}", "GET", "")
        data = json.loads(resp)
        return [
            App(
                name=_get(_get(r, "entity"), "name") or "",
                guid=_get(_get(r, "metadata"), "guid") or "",
            )
            for r in _get(data, "resources") or []
        ]


class BindDrainClient:
    def __init__(self, curler: Curler) -> None:
        self._curler = curler

    def bind_drain(self, app_guid: str, service_instance_guid: str) -> None:
        body = json.dumps({"service_instance_guid": service_instance_guid, "app_guid": app_guid})
        self._curler.curl("/v2/service_bindings", "POST", body)


class CLICurlClient:
    """Curler that runs "curl" through a CLI connection."""

    def __init__(self, connection: Any) -> None:
        self._conn = connection

    def curl(self, url: str, method: str, body: str) -> bytes:
        if method != "GET" or body != "":
            raise ValueError("Request must be a GET with empty body")
        lines = self._conn.cli_command_without_terminal_output("curl", url)
        return "\n".join(lines).encode("utf-8")


class Client:
    def __init__(self, curler: Curler) -> None:
        self._curler = curler

    def env_vars(self, app_guid: str) -> dict[str, str]:
        try:
            resp = self._curler.curl(f"/v3/apps/{app_guid}/env", "GET", "")
        except Exception as err:
            raise CloudControllerError(
                f"failed to fetch app environment variables: {err}"
            ) from err
        data = json.loads(resp)
        return dict(data.get("environment_variables") or {})


_DRAIN_TYPES = frozenset({"all", "metrics", "logs"})


class CreateDrainClient:
    def __init__(self, curler: Curler) -> None:
        self._curler = curler

    def create_drain(self, name: str, url: str, space_guid: str, drain_type: str) -> None:
        if drain_type not in _DRAIN_TYPES:
            raise ValueError(f"invalid drain type: {drain_type}")
        body = json.dumps(
            {
                "syslog_drain_url": f"{url}?drain-type={drain_type}",
                "space_guid": space_guid,
                "name": name,
            }
        )
        self._curler.curl("/v2/user_provided_service_instances", "POST", body)


class HTTPCurlClient:
    """Curler that talks to the API over HTTP with a cached access token.

    ``doer`` needs ``request(method, url, data=..., headers=...)`` returning an
    object with ``status_code`` and ``content``; a requests.Session fits.
    ``token_fetcher.token()`` returns ``(access_token, refresh_token)``.
    On a 401 the token is refreshed and handed to ``restager.save_and_restage``.
    """

    def __init__(self, api_addr: str, doer: Any, token_fetcher: Any, restager: Any) -> None:
        if doer is None:
            import requests

            doer = requests.Session()
        self._api = api_addr
        self._doer = doer
        self._fetcher = token_fetcher
        self._restager = restager
        self._lock = threading.Lock()
        self._access_token = ""

    def curl(self, url: str, method: str, body: str) -> bytes:
        access, _ = self._token()
        return self._auth_curl(url, method, body, access)

    def _auth_curl(self, url: str, method: str, body: str, token: str) -> bytes:
        if method == "GET" and body:
            raise ValueError("GET method must not have a body")
        headers = {}
        if token:
            headers["Authorization"] = token
        if method != "GET":
            headers["Content-Type"] = "application/json"
        resp = self._doer.request(
            method, self._api + url, data=body.encode("utf-8"), headers=headers
        )
        data = resp.content
        if resp.status_code == 401:
            with self._lock:
                self._access_token = ""
            _, refresh = self._token()
            self._restager.save_and_restage(refresh)
            raise UnexpectedStatusError(401, data)
        if not 200 <= resp.status_code <= 299:
            raise UnexpectedStatusError(resp.status_code, data)
        return data

    def _token(self) -> tuple[str, str]:
        with self._lock:
            cached = self._access_token
        if cached:
            return cached, ""
        access, refresh = self._fetcher.token()
        with self._lock:
            self._access_token = access
        return access, refresh


class Restager:
    """Stores a new refresh token on the app and restages it."""

    def __init__(self, app_guid: str, curler: Curler, log: logging.Logger | None = None) -> None:
        self._app_guid = app_guid
        self._curler = curler
        self._log = log or logging.getLogger(__name__)

    def save_and_restage(self, refresh_token: str) -> None:
        body = json.dumps({"var": {"REFRESH_TOKEN": refresh_token}})
        try:
            self._curler.curl(
                f"/v3/apps/{self._app_guid}/environment_variables", "PATCH", body
            )
        except Exception as err:
            self._log.error("Failed to updated REFRESH_TOKEN with cloud controller: %s", err)
            raise CloudControllerError(
                f"Failed to updated REFRESH_TOKEN with cloud controller: {err}"
            ) from err
        try:
            self._curler.curl(f"/v2/apps/{self._app_guid}/restage", "POST", "")
        except Exception as err:
            self._log.error("Failed to restage app: %s", err)
            raise CloudControllerError(f"Failed to restage app: {err}") from err