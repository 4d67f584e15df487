from auditguard.crypto.keys import (
    EnvSecretsProvider,
    SecretsProvider,
    SigningKey,
    StaticSecretsProvider,
)
from auditguard.crypto.signer import EventSigner, canonical_payload, compute_signature

__all__ = [
    "EnvSecretsProvider",
    "EventSigner",
    "SecretsProvider",
    "SigningKey",
    "StaticSecretsProvider",
    "canonical_payload",
    "compute_signature",
]
