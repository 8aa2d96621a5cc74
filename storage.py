"""
storage.py
Proof-of-payment storage. The engine keeps the returned reference and never
looks inside the file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from config import settings
from errors import UploadError


@dataclass(frozen=True)
class StoredProof:
    url: str
    path: str
    content_type: str | None


class ProofStorage(Protocol):
    def upload_proof(self, path: str, data: bytes, content_type: str | None) -> StoredProof:
        ...


class LocalProofStorage:
    """Writes proofs under a local directory; the url is a file:// uri."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root or settings.upload_dir)

    def upload_proof(self, path: str, data: bytes, content_type: str | None) -> StoredProof:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise UploadError("Proof path escapes the upload directory.", "invalid-path")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except PermissionError as exc:
            raise UploadError(str(exc), "unauthorized") from exc
        except OSError as exc:
            raise UploadError(str(exc), "io-error") from exc
        return StoredProof(url=target.as_uri(), path=path, content_type=content_type)
