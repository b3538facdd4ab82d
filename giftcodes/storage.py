from __future__ import annotations
from abc import ABC, abstractmethod
import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

from .errors import UploadError, ValidationError
from .helpers import now_ts

logger = logging.getLogger(__name__)

_SAFE = re.compile(r"[^A-Za-z0-9_-]")


def proof_key(buyer_id: str, filename: Optional[str],
              ts: Optional[float] = None) -> str:
    """``<buyer>/<epoch_ms>.<ext>``"""
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    ext = _SAFE.sub("", ext)[:8] or "bin"
    owner = _SAFE.sub("", buyer_id or "")
    if not owner:
        raise ValidationError("invalid buyer id for proof upload")
    ms = int((ts if ts is not None else now_ts()) * 1000)
    return f"{owner}/{ms}.{ext}"


class ProofStorage(ABC):
    # returns the public URL of the stored object; raises UploadError
    @abstractmethod
    async def upload(self, key: str, data: bytes,
                     content_type: Optional[str] = None) -> str: ...


class LocalProofStorage(ProofStorage):
    """Stores proofs under ``root`` and serves them at ``url_prefix``."""

    def __init__(self, root: str | Path, url_prefix: str) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        # no upsert: a second upload under the same key is an error
        with open(path, "xb") as f:
            f.write(data)

    async def upload(self, key: str, data: bytes,
                     content_type: Optional[str] = None) -> str:
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as e:
            logger.error("proof upload failed key=%s: %s", key, e)
            raise UploadError("could not store the payment proof") from e
        return f"{self.url_prefix}/{key}"


class MemoryProofStorage(ProofStorage):
    def __init__(self, url_prefix: str = "memory://proofs",
                 fail: bool = False) -> None:
        self.url_prefix = url_prefix
        self.fail = fail
        self.objects: Dict[str, bytes] = {}

    async def upload(self, key: str, data: bytes,
                     content_type: Optional[str] = None) -> str:
        if self.fail or key in self.objects:
            raise UploadError("could not store the payment proof")
        self.objects[key] = data
        return f"{self.url_prefix}/{key}"
