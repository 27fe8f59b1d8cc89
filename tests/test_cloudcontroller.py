import json
import threading
from dataclasses import dataclass

import pytest

from syslogforwarder.cloudcontroller import (
    App,
    AppListerClient,
    BindDrainClient,
    CLICurlClient,
    Client,
    CloudControllerError,
    CreateDrainClient,
    HTTPCurlClient,
    Restager,
    UnexpectedStatusError,
)


class StubCurler:
    def __init__(self):
        self.urls, self.methods, self.bodies = [], [], []
        self.resps, self.errs = {}, {}

    def curl(self, url, method, body):
        self.urls.append(url)
        self.methods.append(method)
        self.bodies.append(body)
        if url in self.errs:
            raise self.errs[url]
        return self.resps.get(url, "").encode()


@pytest.fixture
def curler():
    return StubCurler()


def test_list_apps(curler):
    curler.resps["/v2/apps?q=space_guid:some-space"] = """
    {"resources": [
        {"metadata": {"guid": "a"}, "entity": {"name": "app-1"}},
        {"metadata": {"guid": "b"}, "entity": {"name": "app-2"}}
    ]}"""
    apps = AppListerClient(curler).list_apps("some-space")
    assert curler.methods == ["GET"]
    assert curler.urls == ["/v2/apps?q=space_guid:some-space"]
    assert sorted(apps, key=lambda a: a.guid) == [App("app-1", "a"), App("app-2", "b")]


def test_list_apps_error(curler):
    curler.errs["/v2/apps?q=space_guid:some-space"] = RuntimeError("some-error")
    with pytest.raises(RuntimeError, match="some-error"):
        AppListerClient(curler).list_apps("some-space")


def test_list_apps_invalid_json(curler):
    curler.resps["/v2/apps?q=space_guid:some-space"] = "invalid"
    with pytest.raises(ValueError):
        AppListerClient(curler).list_apps("some-space")


def test_bind_drain(curler):
    BindDrainClient(curler).bind_drain("some-app-guid", "some-drain-guid")
    assert curler.methods == ["POST"]
    assert curler.urls == ["/v2/service_bindings"]
    assert json.loads(curler.bodies[0]) == {
        "service_instance_guid": "some-drain-guid",
        "app_guid": "some-app-guid",
    }


def test_bind_drain_error(curler):
    curler.errs["/v2/service_bindings"] = RuntimeError("some-error")
    with pytest.raises(RuntimeError, match="some-error"):
        BindDrainClient(curler).bind_drain("some-app-guid", "some-drain-guid")


class StubConnection:
    def __init__(self):
        self.args = []
        self.resp = {}
        self.err = None

    def cli_command_without_terminal_output(self, *args):
        self.args.append(list(args))
        if self.err:
            raise self.err
        return self.resp.get(" ".join(args), "").split("\n")


def test_cli_curl_uses_curl():
    conn = StubConnection()
    CLICurlClient(conn).curl("some-url", "GET", "")
    assert conn.args == [["curl", "some-url"]]


def test_cli_curl_joins_response():
    conn = StubConnection()
    conn.resp["curl some-url"] = '{\n\t"snacks" : []\n}'
    assert CLICurlClient(conn).curl("some-url", "GET", "") == b'{\n\t"snacks" : []\n}'


def test_cli_curl_error():
    conn = StubConnection()
    conn.err = RuntimeError("some error")
    with pytest.raises(RuntimeError):
        CLICurlClient(conn).curl("some-url", "GET", "")


def test_cli_curl_rejects_non_get():
    c = CLICurlClient(StubConnection())
    with pytest.raises(ValueError):
        c.curl("some-url", "POST", "")
    with pytest.raises(ValueError):
        c.curl("some-url", "GET", "something")


def test_env_vars(curler):
    guid = "5b40bdd6-4587-43aa-b5a5-d1d410560c03"
    curler.resps[f"/v3/apps/{guid}/env"] = json.dumps(
        {
            "environment_variables": {
                "DRAIN_URL": "syslog://my-syslog-drain.com",
                "DRAIN_TYPE": "all",
            }
        }
    )
    envs = Client(curler).env_vars(guid)
    assert curler.urls == [f"/v3/apps/{guid}/env"]
    assert envs["DRAIN_TYPE"] == "all"
    assert envs["DRAIN_URL"] == "syslog://my-syslog-drain.com"


def test_env_vars_error(curler):
    curler.errs["/v3/apps/bad-guid/env"] = RuntimeError("some-err")
    with pytest.raises(CloudControllerError) as exc:
        Client(curler).env_vars("bad-guid")
    assert str(exc.value) == "failed to fetch app environment variables: some-err"


def test_create_drain(curler):
    CreateDrainClient(curler).create_drain("some-name", "some-url", "some-space", "all")
    assert curler.methods == ["POST"]
    assert curler.urls == ["/v2/user_provided_service_instances"]
    assert json.loads(curler.bodies[0]) == {
        "space_guid": "some-space",
        "name": "some-name",
        "syslog_drain_url": "some-url?drain-type=all",
    }


def test_create_drain_error(curler):
    curler.errs["/v2/user_provided_service_instances"] = RuntimeError("some-error")
    with pytest.raises(RuntimeError, match="some-error"):
        CreateDrainClient(curler).create_drain("some-name", "some-url", "some-space", "all")


@pytest.mark.parametrize("drain_type", ["all", "metrics", "logs"])
def test_create_drain_types(curler, drain_type):
    CreateDrainClient(curler).create_drain("some-name", "some-url", "some-space", drain_type)
    body = json.loads(curler.bodies[0])
    assert body["syslog_drain_url"] == f"some-url?drain-type={drain_type}"


def test_create_drain_invalid_type(curler):
    with pytest.raises(ValueError) as exc:
        CreateDrainClient(curler).create_drain("some-name", "some-url", "some-space", "invalid-1")
    assert str(exc.value) == "invalid drain type: invalid-1"
    assert curler.urls == []


@dataclass
class FakeResponse:
    status_code: int
    content: bytes


class SpyDoer:
    def __init__(self):
        self.lock = threading.Lock()
        self.urls, self.methods, self.headers, self.bodies = [], [], [], []
        self.status_code = 200
        self.err = None
        self.resp_body = b""

    def request(self, method, url, data=None, headers=None):
        with self.lock:
            self.urls.append(url)
            self.methods.append(method)
            self.headers.append(dict(headers or {}))
            self.bodies.append((data or b"").decode())
            if self.err:
                raise self.err
            return FakeResponse(self.status_code, self.resp_body)


class SpyTokenFetcher:
    def __init__(self):
        self.lock = threading.Lock()
        self.called = 0
        self.tokens, self.ref_tokens, self.errs = [], [], []

    def token(self):
        with self.lock:
            self.called += 1
            if not self.tokens:
                return "", ""
            t, r, e = self.tokens.pop(0), self.ref_tokens.pop(0), self.errs.pop(0)
            if e:
                raise e
            return t, r


class SpyRestager:
    def __init__(self):
        self.refresh_token = ""

    def save_and_restage(self, refresh_token):
        self.refresh_token = refresh_token


@pytest.fixture
def http_parts():
    doer, fetcher, restager = SpyDoer(), SpyTokenFetcher(), SpyRestager()
    client = HTTPCurlClient("https://api.system-domain.com", doer, fetcher, restager)
    return client, doer, fetcher, restager


def test_http_hits_url(http_parts):
    c, doer, _, _ = http_parts
    doer.resp_body = b"resp-body"
    assert c.curl("/v2/some-url", "PUT", "some-body") == b"resp-body"
    assert doer.urls == ["https://api.system-domain.com/v2/some-url"]
    assert doer.methods == ["PUT"]
    assert doer.bodies == ["some-body"]


def test_http_authorization_header(http_parts):
    c, doer, fetcher, _ = http_parts
    fetcher.tokens, fetcher.ref_tokens, fetcher.errs = ["some-token"], ["some-token"], [None]
    c.curl("some-url", "PUT", "some-body")
    assert doer.headers[0]["Authorization"] == "some-token"


def test_http_reuses_tokens_until_401(http_parts):
    c, doer, fetcher, restager = http_parts
    fetcher.tokens = ["some-token", "some-other-token"]
    fetcher.ref_tokens = ["some-ref-token", "some-other-ref-token"]
    fetcher.errs = [None, None]
    c.curl("some-url", "PUT", "some-body")
    c.curl("some-url", "PUT", "some-body")
    assert fetcher.called == 1
    doer.status_code = 401
    with pytest.raises(UnexpectedStatusError):
        c.curl("some-url", "PUT", "some-body")
    assert fetcher.called == 2
    assert restager.refresh_token == "some-other-ref-token"


def test_http_token_fetch_failure(http_parts):
    c, doer, fetcher, _ = http_parts
    fetcher.tokens, fetcher.ref_tokens = [""], [""]
    fetcher.errs = [RuntimeError("token fetch failure")]
    with pytest.raises(RuntimeError):
        c.curl("some-url", "PUT", "some-body")
    assert doer.urls == []


def test_http_non_2xx(http_parts):
    c, doer, _, _ = http_parts
    doer.status_code = 404
    with pytest.raises(UnexpectedStatusError) as exc:
        c.curl("some-url", "PUT", "some-body")
    assert exc.value.status_code == 404


def test_http_doer_failure(http_parts):
    c, doer, _, _ = http_parts
    doer.err = RuntimeError("some-error")
    with pytest.raises(RuntimeError, match="some-error"):
        c.curl("some-url", "PUT", "some-body")


def test_http_content_type(http_parts):
    c, doer, _, _ = http_parts
    c.curl("some-url", "GET", "")
    assert "Content-Type" not in doer.headers[0]
    c.curl("some-url", "PUT", "some-body")
    assert doer.headers[1]["Content-Type"] == "application/json"


def test_http_get_with_body(http_parts):
    c, _, _, _ = http_parts
    with pytest.raises(ValueError):
        c.curl("some-url", "GET", "some-body")


def test_http_concurrent(http_parts):
    c, doer, _, _ = http_parts
    errors = []

    def run():
        for _ in range(100):
            try:
                c.curl("/v2/some-url", "PUT", "some-body")
            except Exception as err:
                errors.append(err)

    t = threading.Thread(target=run)
    t.start()
    run()
    t.join()
    assert errors == []
    assert len(doer.urls) == 200


def test_restager(curler):
    Restager("app-guid", curler).save_and_restage("refresh")
    assert curler.urls == [
        "/v3/apps/app-guid/environment_variables",
        "/v2/apps/app-guid/restage",
    ]
    assert curler.methods == ["PATCH", "POST"]
    assert json.loads(curler.bodies[0]) == {"var": {"REFRESH_TOKEN": "refresh"}}


def test_restager_failure(curler):
    curler.errs["/v2/apps/app-guid/restage"] = RuntimeError("boom")
    with pytest.raises(CloudControllerError, match="Failed to restage app: boom"):
        Restager("app-guid", curler).save_and_restage("refresh")