"""Extension signing: key material, signature archives and key rotation."""

from .handlers import GenerateSignatureHandler, KeyPairHandler
from .keys import generate_key_pair, load_private_key, load_public_key
from .lifecycle import KeyLifecycleService
from .service import IntegrityService, signature_manifest

__all__ = [
    "GenerateSignatureHandler",
    "IntegrityService",
    "KeyLifecycleService",
    "KeyPairHandler",
    "generate_key_pair",
    "load_private_key",
    "load_public_key",
    "signature_manifest",
]
