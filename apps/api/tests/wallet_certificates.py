"""Throwaway signing material standing in for Apple's pass certificates."""

import base64
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def self_signed(common_name: str) -> tuple[ec.EllipticCurvePrivateKey, x509.Certificate]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return key, certificate


def pem_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def apply_signing_settings(settings) -> None:
    key, certificate = self_signed("Pass Type ID: pass.example.salon.giftcard")
    _, wwdr = self_signed("Apple WWDR Test")
    settings.apple_pass_certificate_pem_base64 = pem_b64(certificate.public_bytes(serialization.Encoding.PEM))
    settings.apple_pass_key_pem_base64 = pem_b64(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    settings.apple_wwdr_certificate_base64 = pem_b64(wwdr.public_bytes(serialization.Encoding.PEM))
