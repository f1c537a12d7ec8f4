# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.integrity.service",
#   "purpose": "Build and verify .sigzip signature archives for extension packages",
#   "sections": [
#     {"id": "integrityservice", "name": "IntegrityService", "anchor": "class-integrityservice", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Signature archives for extension packages.

A ``.sigzip`` archive holds three entries:

``.signature.sig``
    Ed25519 signature over the exact bytes of the stored download.
``.signature.manifest``
    JSON document with the size and base64 SHA-256 digest of the package and
    of every file entry inside it (entry names are base64 encoded).
``.signature.p7s``
    Empty placeholder; VS Code checks that the entry exists.
"""

from __future__ import annotations

import base64
import hashlib
import io
import json
import logging
import zipfile
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature

from ExtRegistry.Maintenance.catalog.models import SignatureKeyPair
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.integrity.keys import load_private_key, load_public_key

__all__ = [
    "IntegrityService",
    "SIGNATURE_ENTRY",
    "MANIFEST_ENTRY",
    "P7S_ENTRY",
    "signature_manifest",
]

logger = logging.getLogger(__name__)

SIGNATURE_ENTRY = ".signature.sig"
MANIFEST_ENTRY = ".signature.manifest"
P7S_ENTRY = ".signature.p7s"


def _manifest_entry(content: bytes) -> Dict[str, Any]:
    digest = base64.b64encode(hashlib.sha256(content).digest()).decode("ascii")
    return {"size": len(content), "digests": {"sha256": digest}}


def signature_manifest(package_bytes: bytes) -> bytes:
    """Return the ``.signature.manifest`` document for a package."""
    entries: Dict[str, Any] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(package_bytes)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                name = base64.b64encode(info.filename.encode("utf-8")).decode("ascii")
                entries[name] = _manifest_entry(archive.read(info))
    except zipfile.BadZipFile as exc:
        raise DataIntegrityError(f"Cannot sign package: {exc}") from exc

    manifest = {"package": _manifest_entry(package_bytes), "entries": entries}
    return json.dumps(manifest, separators=(",", ":")).encode("utf-8")


class IntegrityService:
    """Signs packages with a stored key pair and verifies signature archives."""

    def generate_signature(
        self, download_name: str, package_bytes: bytes, key_pair: SignatureKeyPair
    ) -> bytes:
        """Return the ``.sigzip`` bytes signing ``package_bytes`` with ``key_pair``."""
        signer = load_private_key(key_pair.private_key)
        signature = signer.sign(package_bytes)
        manifest = signature_manifest(package_bytes)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(SIGNATURE_ENTRY, signature)
            archive.writestr(MANIFEST_ENTRY, manifest)
            archive.writestr(P7S_ENTRY, b"")
        logger.debug(f"Signed {download_name} with key pair {key_pair.public_id}")
        return buffer.getvalue()

    def verify(self, package_bytes: bytes, sigzip_bytes: bytes, public_key_pem: str) -> bool:
        """Return True when the archive's signature matches the package and key."""
        signature = self.read_entry(sigzip_bytes, SIGNATURE_ENTRY)
        if signature is None:
            return False
        try:
            load_public_key(public_key_pem).verify(signature, package_bytes)
        except InvalidSignature:
            return False
        return True

    @staticmethod
    def read_entry(sigzip_bytes: bytes, name: str) -> Optional[bytes]:
        try:
            with zipfile.ZipFile(io.BytesIO(sigzip_bytes)) as archive:
                if name not in archive.namelist():
                    return None
                return archive.read(name)
        except zipfile.BadZipFile:
            return None
