"""Loading of Apple Wallet signing material from base64 settings."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key, pkcs12

from salonref_api.core.settings import Settings


class PassConfigurationError(RuntimeError):
    """Raised when Wallet certificates are missing or unreadable."""


@dataclass(slots=True)
class PassSigningMaterial:
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
    wwdr_certificate: x509.Certificate


def _decode(value: str, label: str) -> bytes:
    try:
        return base64.b64decode(value.strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise PassConfigurationError(f"{label} is not valid base64") from exc


def _load_certificate(data: bytes, label: str) -> x509.Certificate:
    try:
        if b"-----BEGIN" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise PassConfigurationError(f"{label} could not be parsed") from exc


def _check_key(key: object) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise PassConfigurationError("pass signing key must be RSA or EC")
    return key


def load_signing_material(settings: Settings) -> PassSigningMaterial:
    """Read the pass certificate, key and WWDR intermediate.

    PEM certificate plus key is preferred; a PKCS#12 bundle is accepted for
    older deployments.
    """

    if not settings.apple_wwdr_certificate_base64:
        raise PassConfigurationError("APPLE_WWDR_CERTIFICATE_BASE64 is not configured")
    wwdr = _load_certificate(_decode(settings.apple_wwdr_certificate_base64, "WWDR certificate"), "WWDR certificate")
    password = settings.apple_pass_certificate_password.encode("utf-8") if settings.apple_pass_certificate_password else None

    if settings.apple_pass_certificate_pem_base64 and settings.apple_pass_key_pem_base64:
        certificate = _load_certificate(
            _decode(settings.apple_pass_certificate_pem_base64, "pass certificate"), "pass certificate"
        )
        try:
            key = load_pem_private_key(_decode(settings.apple_pass_key_pem_base64, "pass key"), password=password)
        except (TypeError, ValueError) as exc:
            raise PassConfigurationError("pass key could not be loaded") from exc
        return PassSigningMaterial(certificate=certificate, private_key=_check_key(key), wwdr_certificate=wwdr)

    if settings.apple_pass_certificate_p12_base64:
        try:
            key, certificate, _ = pkcs12.load_key_and_certificates(
                _decode(settings.apple_pass_certificate_p12_base64, "PKCS#12 bundle"), password
            )
        except ValueError as exc:
            raise PassConfigurationError("PKCS#12 bundle could not be loaded") from exc
        if certificate is None or key is None:
            raise PassConfigurationError("PKCS#12 bundle lacks a certificate or key")
        return PassSigningMaterial(certificate=certificate, private_key=_check_key(key), wwdr_certificate=wwdr)

    raise PassConfigurationError("no pass certificate configured (PEM or PKCS#12)")
