"""TLS contexts for syslog drains and mutually authenticated connections."""

from __future__ import annotations

import ssl
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature

SUPPORTED_CIPHERS = "ECDHE-RSA-AES128-GCM-SHA256:ECDHE-RSA-AES256-GCM-SHA384"


class TLSConfigError(Exception):
    """Raised when a TLS context cannot be built."""


class CASignatureError(TLSConfigError):
    """Raised when the certificate is not signed by the given CA."""


class _ClientContext(ssl.SSLContext):
    """An SSL context that also remembers the server name to verify."""

    server_name: str = ""


def _base_context() -> _ClientContext:
    ctx = _ClientContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.set_ciphers(SUPPORTED_CIPHERS)
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def new_tls_context() -> ssl.SSLContext:
    """A verifying TLS 1.2+ client context using the system trust store."""
    ctx = _base_context()
    ctx.load_default_certs()
    return ctx


def new_mutual_tls_context(
    cert_file: str, key_file: str, ca_cert_file: str, server_name: str
) -> ssl.SSLContext:
    """A context presenting a client certificate and trusting the given CA."""
    ctx = _base_context()
    try:
        ctx.load_cert_chain(cert_file, key_file)
    except OSError as err:
        raise TLSConfigError(f"failed to load keypair: {err}") from err
    ctx.server_name = server_name

    if ca_cert_file:
        _add_ca(ctx, cert_file, ca_cert_file)
    else:
        ctx.load_default_certs()
    return ctx


def _validity(cert: x509.Certificate) -> tuple[datetime, datetime]:
    if hasattr(cert, "not_valid_before_utc"):
        return cert.not_valid_before_utc, cert.not_valid_after_utc
    return (
        cert.not_valid_before.replace(tzinfo=timezone.utc),
        cert.not_valid_after.replace(tzinfo=timezone.utc),
    )


def _issued_by(cert: x509.Certificate, ca: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(ca)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _add_ca(ctx: ssl.SSLContext, cert_file: str, ca_cert_file: str) -> None:
    try:
        ca_data = Path(ca_cert_file).read_bytes()
    except OSError as err:
        raise TLSConfigError(f"failed to read ca cert file: {err}") from err

    try:
        cas = x509.load_pem_x509_certificates(ca_data)
        ctx.load_verify_locations(cadata=ca_data.decode("ascii"))
    except (ValueError, ssl.SSLError):
        raise TLSConfigError("unable to load ca cert file") from None

    try:
        leaf = x509.load_pem_x509_certificates(Path(cert_file).read_bytes())[0]
    except (OSError, ValueError) as err:
        raise TLSConfigError(f"failed to parse certificate: {err}") from err

    if not any(_issued_by(leaf, ca) for ca in cas):
        raise CASignatureError("x509: certificate signed by unknown authority")

    not_before, not_after = _validity(leaf)
    now = datetime.now(timezone.utc)
    if not not_before <= now <= not_after:
        raise CASignatureError("x509: certificate has expired or is not yet valid")