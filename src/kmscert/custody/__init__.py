"""Key custody backends: public key export and remote digest signing."""

from kmscert.custody.base import DigestSigner, KeyCustodyBackend, KeyMaterialProvider
from kmscert.custody.registry import load_custody_backend

__all__ = [
    "DigestSigner",
    "KeyCustodyBackend",
    "KeyMaterialProvider",
    "load_custody_backend",
]
