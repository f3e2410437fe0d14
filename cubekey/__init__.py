"""Software WebAuthn authenticator keyed by a physical cube state."""

from .bridge import PlaywrightBridge
from .config import AuthenticatorSettings
from .errors import AuthenticatorError, ErrorKind
from .physical import PendingStateRequests, PromptStateProvider, StaticStateProvider
from .service import AuthenticatorEngine, CeremonyState
from .storage import CredentialStore
from .models import StoredCredential
from .vault import SecretVault

__all__ = [
    "AuthenticatorEngine",
    "AuthenticatorSettings",
    "AuthenticatorError",
    "CeremonyState",
    "ErrorKind",
    "CredentialStore",
    "StoredCredential",
    "SecretVault",
    "StaticStateProvider",
    "PromptStateProvider",
    "PendingStateRequests",
    "PlaywrightBridge",
]
