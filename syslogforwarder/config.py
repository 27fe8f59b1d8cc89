"""Configuration of the forwarder, read from environment variables."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from fractions import Fraction
from typing import Mapping
from urllib.parse import urlsplit


class ConfigError(ValueError):
    """Raised when the environment does not hold a valid configuration."""


@dataclass
class VCap:
    """The parts of VCAP_APPLICATION the forwarder needs."""

    app_id: str = ""
    api: str = ""
    space_guid: str = ""
    rlp_addr: str = ""


def parse_vcap(data: str) -> VCap:
    """Decode VCAP_APPLICATION and derive the plain-HTTP API and gateway addresses."""
    try:
        raw = json.loads(data)
    except ValueError as err:
        raise ConfigError(f"invalid VCAP_APPLICATION: {err}") from err
    if not isinstance(raw, dict):
        raise ConfigError("invalid VCAP_APPLICATION: expected a JSON object")

    values = {}
    for key in ("application_id", "cf_api", "space_id"):
        value = raw.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ConfigError(f"invalid VCAP_APPLICATION: {key} must be a string")
        values[key] = value

    api = values["cf_api"]
    return VCap(
        app_id=values["application_id"],
        api=api.replace("https", "http", 1),
        space_guid=values["space_id"],
        rlp_addr=api.replace("https://api", "http://log-stream", 1),
    )


_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"([0-9]+\.?[0-9]*|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "1.5s" or "1h30m"."""
    original = text
    if not text:
        raise ConfigError(f"invalid duration {original!r}")
    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ConfigError(f"invalid duration {original!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ConfigError(f"invalid duration {original!r}")
        total += Fraction(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=round(sign * total / 1000))


_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(name: str, value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"invalid boolean for {name}: {value!r}")


def _format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds}s"


@dataclass
class Config:
    """Settings of the forwarder."""

    http_proxy: str
    source_hostname: str
    syslog_url: str
    vcap: VCap
    source_id: str = ""
    include_services: bool = False
    skip_cert_verify: bool = False
    update_interval: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    dial_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=5))
    io_timeout: timedelta = field(default_factory=lambda: timedelta(minutes=1))
    keep_alive: timedelta = field(default_factory=lambda: timedelta(seconds=10))
    shard_id: str = ""

    def report(self) -> str:
        """A table of the reported settings, their variables and values."""
        rows = [
            ("FIELD NAME:", "ENV:", "REQUIRED:", "VALUE:"),
            ("HttpProxy", "HTTP_PROXY", "true", self.http_proxy),
            ("SourceID", "SOURCE_ID", "false", self.source_id),
            ("SourceHostname", "SOURCE_HOSTNAME", "true", self.source_hostname),
            ("IncludeServices", "INCLUDE_SERVICES", "false", str(self.include_services).lower()),
            ("SyslogURL", "SYSLOG_URL", "true", self.syslog_url),
            ("SkipCertVerify", "SKIP_CERT_VERIFY", "false", str(self.skip_cert_verify).lower()),
            ("UpdateInterval", "UPDATE_INTERVAL", "false", _format_duration(self.update_interval)),
            ("DialTimeout", "DIAL_TIMEOUT", "false", _format_duration(self.dial_timeout)),
            ("IOTimeout", "IO_TIMEOUT", "false", _format_duration(self.io_timeout)),
            ("KeepAlive", "KEEP_ALIVE", "false", _format_duration(self.keep_alive)),
        ]
        widths = [max(len(row[i]) for row in rows) for i in range(3)]
        lines = [
            "  ".join(cell.ljust(width) for cell, width in zip(row[:3], widths)) + "  " + row[3]
            for row in rows
        ]
        return "\n".join(lines) + "\n"


_REQUIRED = ("HTTP_PROXY", "SOURCE_HOSTNAME", "SYSLOG_URL", "VCAP_APPLICATION")


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build the configuration from the environment (os.environ by default)."""
    env = os.environ if environ is None else environ

    def get(name: str) -> str:
        return env.get(name, "") or ""

    missing = [name for name in _REQUIRED if not get(name)]
    if missing:
        raise ConfigError("missing required environment variables: " + ", ".join(missing))

    syslog_url = get("SYSLOG_URL")
    try:
        urlsplit(syslog_url)
    except ValueError as err:
        raise ConfigError(f"invalid SYSLOG_URL: {err}") from err

    vcap = parse_vcap(get("VCAP_APPLICATION"))
    cfg = Config(
        http_proxy=get("HTTP_PROXY"),
        source_hostname=get("SOURCE_HOSTNAME"),
        syslog_url=syslog_url,
        vcap=vcap,
        source_id=get("SOURCE_ID"),
    )

    for name, attr in (("INCLUDE_SERVICES", "include_services"), ("SKIP_CERT_VERIFY", "skip_cert_verify")):
        if get(name):
            setattr(cfg, attr, _parse_bool(name, get(name)))

    for name, attr in (
        ("UPDATE_INTERVAL", "update_interval"),
        ("DIAL_TIMEOUT", "dial_timeout"),
        ("IO_TIMEOUT", "io_timeout"),
        ("KEEP_ALIVE", "keep_alive"),
    ):
        if get(name):
            setattr(cfg, attr, parse_duration(get(name)))

    cfg.shard_id = vcap.app_id
    return cfg