"""Assembly and signing of ``.pkpass`` gift card passes."""

from __future__ import annotations

import hashlib
import io
import json
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7
from loguru import logger

from salonref_api.core.settings import Settings

from .auth import pass_authentication_token
from .certificates import PassConfigurationError, PassSigningMaterial, load_signing_material

PKPASS_CONTENT_TYPE = "application/vnd.apple.pkpass"
_ASSET_SUFFIXES = {".png"}


@dataclass(slots=True)
class GiftCardPassFields:
    serial_number: str
    balance_cents: int
    currency: str
    customer_name: str
    valid_at: str | None = None


def _format_gan(gan: str) -> str:
    digits = re.sub(r"\D", "", gan) or gan
    return " ".join(digits[index : index + 4] for index in range(0, len(digits), 4))


class PassBuilder:
    """Builds the pass archive; PKCS#7 signing is delegated to ``cryptography``."""

    def __init__(
        self,
        *,
        pass_type_identifier: str,
        team_identifier: str,
        organization_name: str,
        description: str,
        web_service_url: str,
        auth_secret: str,
        signing: PassSigningMaterial | None,
        assets_dir: Path | None = None,
    ) -> None:
        self.pass_type_identifier = pass_type_identifier
        self.team_identifier = team_identifier
        self.organization_name = organization_name
        self.description = description
        self.web_service_url = web_service_url
        self._auth_secret = auth_secret
        self._signing = signing
        self._assets_dir = assets_dir

    @classmethod
    def from_settings(cls, settings: Settings) -> "PassBuilder":
        signing: PassSigningMaterial | None = None
        try:
            signing = load_signing_material(settings)
        except PassConfigurationError as exc:
            logger.warning("Wallet pass signing unavailable", reason=str(exc))
        return cls(
            pass_type_identifier=settings.apple_pass_type_id,
            team_identifier=settings.apple_team_id,
            organization_name=settings.apple_pass_organization_name,
            description=settings.apple_pass_description,
            web_service_url=settings.wallet_web_service_url,
            auth_secret=settings.apple_pass_auth_secret,
            signing=signing,
            assets_dir=Path(settings.apple_pass_assets_dir) if settings.apple_pass_assets_dir else None,
        )

    @property
    def signing(self) -> PassSigningMaterial | None:
        return self._signing

    @property
    def is_configured(self) -> bool:
        return bool(self._signing and self.pass_type_identifier and self.team_identifier and self._auth_secret)

    def authentication_token(self, serial_number: str) -> str:
        return pass_authentication_token(self._auth_secret, serial_number)

    def build_pass_json(self, fields: GiftCardPassFields) -> dict[str, Any]:
        barcode_message = re.sub(r"\D", "", fields.serial_number) or fields.serial_number
        back_fields = [{"key": "terms", "label": "TERMS", "value": "Redeemable for services and products in store."}]
        if fields.valid_at:
            back_fields.insert(0, {"key": "validAt", "label": "VALID AT", "value": fields.valid_at})
        barcode = {"format": "PKBarcodeFormatQR", "message": barcode_message, "messageEncoding": "iso-8859-1"}
        return {
            "formatVersion": 1,
            "passTypeIdentifier": self.pass_type_identifier,
            "teamIdentifier": self.team_identifier,
            "serialNumber": fields.serial_number,
            "organizationName": self.organization_name,
            "description": self.description,
            "logoText": self.organization_name,
            "foregroundColor": "rgb(255, 255, 255)",
            "backgroundColor": "rgb(94, 62, 84)",
            "labelColor": "rgb(241, 222, 232)",
            "webServiceURL": self.web_service_url,
            "authenticationToken": self.authentication_token(fields.serial_number),
            "barcodes": [barcode],
            "barcode": barcode,
            "storeCard": {
                "primaryFields": [
                    {
                        "key": "balance",
                        "label": "BALANCE",
                        "value": round(fields.balance_cents / 100, 2),
                        "currencyCode": fields.currency,
                        "changeMessage": "Your gift card balance is now %@",
                    }
                ],
                "secondaryFields": [{"key": "customerName", "label": "NAME", "value": fields.customer_name}],
                "auxiliaryFields": [
                    {"key": "cardNumber", "label": "CARD NUMBER", "value": _format_gan(fields.serial_number)}
                ],
                "backFields": back_fields,
            },
        }

    def _asset_files(self) -> dict[str, bytes]:
        if self._assets_dir is None:
            return {}
        if not self._assets_dir.is_dir():
            logger.warning("Wallet pass assets directory missing", path=str(self._assets_dir))
            return {}
        return {
            path.name: path.read_bytes()
            for path in sorted(self._assets_dir.iterdir())
            if path.is_file() and path.suffix.lower() in _ASSET_SUFFIXES
        }

    def sign_manifest(self, manifest: bytes) -> bytes:
        if self._signing is None:
            raise PassConfigurationError("pass signing certificate is not configured")
        return (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(manifest)
            .add_signer(self._signing.certificate, self._signing.private_key, hashes.SHA256())
            .add_certificate(self._signing.wwdr_certificate)
            .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary])
        )

    def build(self, fields: GiftCardPassFields) -> bytes:
        """Return the zipped, signed pass for ``fields``."""

        files = {"pass.json": json.dumps(self.build_pass_json(fields), indent=2).encode("utf-8")}
        files.update(self._asset_files())
        manifest = json.dumps(
            {name: hashlib.sha1(content).hexdigest() for name, content in files.items()},
            indent=2,
            sort_keys=True,
        ).encode("utf-8")
        signature = self.sign_manifest(manifest)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, content in files.items():
                archive.writestr(name, content)
            archive.writestr("manifest.json", manifest)
            archive.writestr("signature", signature)
        return buffer.getvalue()
