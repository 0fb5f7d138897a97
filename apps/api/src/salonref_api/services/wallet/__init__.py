"""Apple Wallet gift card passes."""

from .auth import pass_authentication_token, verify_pass_authorization
from .certificates import PassConfigurationError, PassSigningMaterial, load_signing_material
from .passes import PKPASS_CONTENT_TYPE, GiftCardPassFields, PassBuilder
from .push import ApnsPushBackend, InMemoryWalletPushBackend, PushResult, WalletPushBackend, WalletPushService
from .registrations import WalletRegistrationService, format_update_tag, parse_update_tag

__all__ = [
    "ApnsPushBackend",
    "GiftCardPassFields",
    "InMemoryWalletPushBackend",
    "PKPASS_CONTENT_TYPE",
    "PassBuilder",
    "PassConfigurationError",
    "PassSigningMaterial",
    "PushResult",
    "WalletPushBackend",
    "WalletPushService",
    "WalletRegistrationService",
    "format_update_tag",
    "load_signing_material",
    "parse_update_tag",
    "pass_authentication_token",
    "verify_pass_authorization",
]
