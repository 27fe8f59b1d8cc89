# syslogforwarder

A library of the parts needed to forward application and service logs from
a platform's log stream gateway: reading the forwarder's settings from the
environment, finding the apps and service instances whose logs to follow,
streaming envelope batches from the gateway, keeping the set of followed
sources up to date, and talking to the cloud controller API.

## Installing

```
pip install .
```

## Modules

### `syslogforwarder.config`

`load_config(environ=None)` builds a `Config` from environment variables
(`os.environ` by default) and raises `ConfigError` when something is missing
or malformed.

| Variable            | Required | Meaning                                                          |
|---------------------|----------|------------------------------------------------------------------|
| `HTTP_PROXY`        | yes      | Proxy address                                                    |
| `SOURCE_HOSTNAME`   | yes      | Hostname prefix for forwarded messages                           |
| `SYSLOG_URL`        | yes      | Drain URL                                                        |
| `VCAP_APPLICATION`  | yes      | JSON with `application_id`, `cf_api` and `space_id`              |
| `SOURCE_ID`         | no       | Follow only this app or service instance; empty means the space  |
| `INCLUDE_SERVICES`  | no       | Also follow the service instances of the space                   |
| `SKIP_CERT_VERIFY`  | no       | Do not verify the drain's TLS certificate                        |
| `UPDATE_INTERVAL`   | no       | How often the space is re-scanned (default `30s`)                |
| `DIAL_TIMEOUT`      | no       | Connection timeout (default `5s`)                                |
| `IO_TIMEOUT`        | no       | Write timeout (default `1m`)                                     |
| `KEEP_ALIVE`        | no       | TCP keep-alive (default `10s`)                                   |

`parse_duration` accepts forms such as `500ms`, `1.5s` and `1h30m`.
`parse_vcap` decodes `VCAP_APPLICATION` into a `VCap`, deriving a plain-HTTP
API address and the gateway address (`https://api...` becomes
`http://log-stream...`). `Config.shard_id` is the application id, and
`Config.report()` returns a table of the settings.

```python
from syslogforwarder.config import load_config

cfg = load_config({
    "HTTP_PROXY": "http://localhost:8080",
    "SOURCE_HOSTNAME": "my-host",
    "SYSLOG_URL": "syslog-tls://logs.example.com:6514",
    "VCAP_APPLICATION": '{"application_id":"forwarder-id",'
                        '"cf_api":"https://api.example.com","space_id":"space-guid"}',
})
print(cfg.vcap.rlp_addr)   # http://log-stream.example.com
print(cfg.report())
```

### `syslogforwarder.envelope`

Dataclasses `Envelope`, `Log`, `LogType`, `Gauge`, `GaugeValue`, `Counter`
and `Timer`, with `envelope_from_json` and `batch_from_json` to decode the
JSON form of one envelope or of a `{"batch": [...]}` batch.

### `syslogforwarder.gateway`

`RLPGatewayClient(addr).stream(request, cancelled=None)` returns a callable;
each call gives the next batch of envelopes read from the gateway's
server-sent events at `/v2/read`, reconnecting after failures, and `None` once
the `cancelled` event is set. `selectors_for_source(source_id)` builds the
log, gauge and counter selectors for an `EgressBatchRequest`.

### `syslogforwarder.sources`

`SingleOrSpaceProvider(source_id, api_addr, space_guid, include_services,
http_client=..., exclude_filter=...)` lists `Resource` entries: the single
app (falling back to a matching service instance) when `source_id` is set,
otherwise the apps of the space, preceded by its service instances when
`include_services` is true, leaving out any GUID for which `exclude_filter`
returns true. Failures raise `SourceProviderError`.

### `syslogforwarder.orchestration`

`SourceManager(provider, orchestrator, interval)` calls
`update_sources()` at once and then every interval in `start()` until
`stop()`, turning each resource into a `Task` and handing the tasks to the
orchestrator. `Orchestrator` spreads tasks over the workers added with
`add_worker`, through a `Communicator` that calls a worker's `list()`,
`add(resource)` and `remove(guid)`.

### `syslogforwarder.drain`

`ServiceDrainLister(curler, app_name_batch_limit=100).drains(space_guid)`
returns a `Drain` for each user-provided service instance with a syslog
drain URL, with the names and GUIDs of the bound apps, the drain type
(`logs` unless the URL says `drain-type=...`) and whether the scheme ends in
`-v3`.

### `syslogforwarder.cloudcontroller`

`AppListerClient`, `BindDrainClient`, `CreateDrainClient` (drain types
`all`, `metrics`, `logs`) and `Client.env_vars` work through any object with
a `curl(url, method, body)` method. `HTTPCurlClient` is such an object over
HTTP with a cached access token; on a 401 it fetches a new token and passes
the refresh token to a `Restager`, which stores it on the app and restages
it. `CLICurlClient` runs `curl` through a CLI connection. Failures raise
`CloudControllerError` or `UnexpectedStatusError`.

### `syslogforwarder.tlsconfig`

`new_tls_context()` and `new_mutual_tls_context(cert_file, key_file,
ca_cert_file, server_name)` build TLS 1.2+ client contexts; the latter
checks that the certificate is signed by the given CA and raises
`CASignatureError` otherwise, or `TLSConfigError` for unreadable files.

## What this package does not do

There is no command to run. The package does not turn envelopes into
syslog messages and does not send anything to a drain; it has no TCP, TLS or
HTTPS drain writers and no retry around them. It also provides no worker
that merges several gateway streams into one: the orchestrator needs a
worker with `list`, `add` and `remove` supplied by the caller.

## Tests

```
pip install .[test]
pytest
```