"""TLS certificate provisioning for the webhook listener."""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import os
import ssl
from datetime import timedelta
from pathlib import Path
from typing import Iterable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from access_pagerduty.errors import CertificateError
from access_pagerduty.utils.time import utc_now

logger = logging.getLogger(__name__)

CERT_VALIDITY = timedelta(days=365)
_KEY_SIZE = 2048
_DEFAULT_HOSTS = ("localhost", "127.0.0.1")


def _subject_alt_names(hosts: Iterable[str]) -> list[x509.GeneralName]:
    names: list[x509.GeneralName] = []
    seen: set[str] = set()
    for host in [*hosts, *_DEFAULT_HOSTS]:
        if not host or host in seen or host in ("0.0.0.0", "::"):
            continue
        seen.add(host)
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            names.append(x509.DNSName(host))
    return names


def generate_self_signed_cert(hosts: Iterable[str]) -> tuple[bytes, bytes]:
    """Return a PEM certificate and private key valid for ``hosts``."""
    host_list = [host for host in hosts if host]
    common_name = next(
        (h for h in host_list if h not in ("0.0.0.0", "::")), _DEFAULT_HOSTS[0]
    )
    key = rsa.generate_private_key(public_exponent=65537, key_size=_KEY_SIZE)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Teleport PagerDuty plugin"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    now = utc_now()
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.SubjectAlternativeName(_subject_alt_names(host_list)), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def verify_cert_pair(cert_file: str | Path, key_file: str | Path) -> None:
    """Check that the files load as a TLS server certificate and key."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(certfile=str(cert_file), keyfile=str(key_file))
    except (OSError, ssl.SSLError) as exc:
        raise CertificateError(
            f"cannot load TLS certificate {cert_file} with key {key_file}: {exc}"
        ) from exc


def ensure_cert(cert_file: str | Path, key_file: str | Path, hosts: Iterable[str]) -> bool:
    """Make sure a certificate and key exist, generating a self-signed pair if needed.

    Returns ``True`` when a new pair was written. Existing pairs are only
    verified; a lone certificate or key is treated as a misconfiguration.
    """
    cert_path = Path(cert_file)
    key_path = Path(key_file)
    cert_exists = cert_path.exists()
    key_exists = key_path.exists()

    if cert_exists and key_exists:
        verify_cert_pair(cert_path, key_path)
        return False
    if cert_exists or key_exists:
        present, missing = (cert_path, key_path) if cert_exists else (key_path, cert_path)
        raise CertificateError(f"found {present} but {missing} is missing")

    logger.warning("No TLS keys found, generating a self-signed certificate at %s", cert_path)
    cert_pem, key_pem = generate_self_signed_cert(hosts)
    try:
        cert_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(key_pem)
        cert_path.write_bytes(cert_pem)
    except OSError as exc:
        # never leave half a pair behind
        for path in (key_path, cert_path):
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
        raise CertificateError(f"cannot write TLS certificate {cert_path}: {exc}") from exc
    return True
