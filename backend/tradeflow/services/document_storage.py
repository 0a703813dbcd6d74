from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from pathlib import Path

from tradeflow.config import settings


@dataclass(frozen=True)
class StoredBlob:
    storage_uri: str
    file_name: str
    size: int
    checksum_sha256: str


def storage_root() -> Path:
    """Return the absolute storage root for this backend instance."""

    root = Path(settings.storage_dir)
    if root.is_absolute():
        return root

    # backend/tradeflow/services/... -> backend/
    backend_root = Path(__file__).resolve().parents[2]
    return (backend_root / root).resolve()


def write_deal_document_bytes(*, deal_id: int, filename: str, content: bytes) -> StoredBlob:
    """Persist an uploaded deal document under ``<root>/deals/<deal_id>/``.

    - Each upload gets its own directory, so re-uploading a filename never
      overwrites an earlier version.
    - Uses an atomic write (tmp -> replace).
    - Returns a file:// storage_uri.
    """

    root = storage_root()
    target_dir = (root / "deals" / str(int(deal_id)) / uuid.uuid4().hex).resolve()
    target_dir.mkdir(parents=True, exist_ok=True)

    safe_name = Path(filename or "").name or "document.bin"
    target_path = (target_dir / safe_name).resolve()
    if not target_path.is_relative_to(target_dir):
        raise ValueError("Invalid document path")

    tmp_path = target_path.with_suffix(target_path.suffix + ".tmp")
    tmp_path.write_bytes(content)
    tmp_path.replace(target_path)

    return StoredBlob(
        storage_uri=f"file://{target_path.as_posix()}",
        file_name=safe_name,
        size=len(content),
        checksum_sha256=hashlib.sha256(content).hexdigest(),
    )


def resolve_local_path_from_storage_uri(storage_uri: str) -> Path:
    if not storage_uri.startswith("file://"):
        raise ValueError("Unsupported storage_uri")

    p = Path(storage_uri[len("file://") :])

    # Require it to be under storage_root() to prevent path traversal.
    root = storage_root().resolve()
    resolved = p.resolve()
    if not resolved.is_relative_to(root):
        raise ValueError("Invalid storage_uri path")

    return resolved


def delete_blob(storage_uri: str) -> bool:
    """Remove a stored blob and its per-upload directory; False if already gone."""

    path = resolve_local_path_from_storage_uri(storage_uri)
    if not path.exists():
        return False
    path.unlink()
    parent = path.parent
    if parent != storage_root().resolve() and not any(parent.iterdir()):
        parent.rmdir()
    return True
