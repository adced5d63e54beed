from __future__ import annotations

import ipaddress
import stat
from pathlib import Path

import pytest
from cryptography import x509

from access_pagerduty.errors import CertificateError
from access_pagerduty.webhook.certs import ensure_cert, generate_self_signed_cert, verify_cert_pair


def test_generate_self_signed_cert_names() -> None:
    cert_pem, key_pem = generate_self_signed_cert(["0.0.0.0", "plugin.example.com"])

    cert = x509.load_pem_x509_certificate(cert_pem)
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert set(san.get_values_for_type(x509.DNSName)) == {"plugin.example.com", "localhost"}
    assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]
    assert b"PRIVATE KEY" in key_pem


def test_ensure_cert_generates_missing_pair(tmp_path) -> None:
    cert_file = tmp_path / "tls" / "server.crt"
    key_file = tmp_path / "tls" / "server.key"

    assert ensure_cert(cert_file, key_file, ["localhost"]) is True
    assert cert_file.exists() and key_file.exists()
    assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
    verify_cert_pair(cert_file, key_file)

    # existing pairs are reused
    cert_bytes = cert_file.read_bytes()
    assert ensure_cert(cert_file, key_file, ["localhost"]) is False
    assert cert_file.read_bytes() == cert_bytes


def test_ensure_cert_rejects_lone_file(tmp_path) -> None:
    cert_file = tmp_path / "server.crt"
    key_file = tmp_path / "server.key"
    cert_pem, _ = generate_self_signed_cert(["localhost"])
    cert_file.write_bytes(cert_pem)

    with pytest.raises(CertificateError, match="missing"):
        ensure_cert(cert_file, key_file, ["localhost"])


def test_ensure_cert_rejects_mismatched_pair(tmp_path) -> None:
    cert_file = tmp_path / "server.crt"
    key_file = tmp_path / "server.key"
    cert_pem, _ = generate_self_signed_cert(["localhost"])
    _, other_key_pem = generate_self_signed_cert(["localhost"])
    cert_file.write_bytes(cert_pem)
    key_file.write_bytes(other_key_pem)

    with pytest.raises(CertificateError):
        ensure_cert(cert_file, key_file, ["localhost"])


def test_ensure_cert_removes_key_when_cert_write_fails(tmp_path, monkeypatch) -> None:
    cert_file = tmp_path / "server.crt"
    key_file = tmp_path / "server.key"
    write_bytes = Path.write_bytes

    def failing_write_bytes(self: Path, data: bytes) -> int:
        if self == cert_file:
            raise OSError("disk full")
        return write_bytes(self, data)

    monkeypatch.setattr(Path, "write_bytes", failing_write_bytes)
    with pytest.raises(CertificateError, match="disk full"):
        ensure_cert(cert_file, key_file, ["localhost"])
    assert not key_file.exists()
    assert not cert_file.exists()

    monkeypatch.undo()
    assert ensure_cert(cert_file, key_file, ["localhost"]) is True
    verify_cert_pair(cert_file, key_file)
