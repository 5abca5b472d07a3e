"""
Self-signed TLS material for nodes started with TLS enabled.

Each node gets its own key and certificate. Peers trust each other through the
shared certificate directory the harness fills at creation time.
"""

from __future__ import annotations

import datetime
import ipaddress
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from beacon_harness.types import ArtifactError

CERT_VALIDITY = datetime.timedelta(days=7)
"""Lifetime of a generated certificate. Runs last minutes."""


@dataclass(frozen=True, slots=True)
class TlsMaterial:
    """Paths of a node's PEM key and certificate."""

    key_path: Path
    cert_path: Path


def _san_for(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


def generate_self_signed(host: str, folder: Path) -> TlsMaterial:
    """
    Create a P-256 key and a self-signed certificate valid for `host`.

    Args:
        host: Hostname or IP literal the node serves on.
        folder: Directory receiving `server.key` and `server.pem`.

    Raises:
        ArtifactError: If the files cannot be written.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)])
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.SubjectAlternativeName([_san_for(host)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    material = TlsMaterial(key_path=folder / "server.key", cert_path=folder / "server.pem")
    try:
        folder.mkdir(parents=True, exist_ok=True)
        material.key_path.write_bytes(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        material.cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    except OSError as exc:
        raise ArtifactError(f"Cannot write TLS material in {folder}: {exc}") from exc
    return material
