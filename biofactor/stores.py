"""
Backend contracts consumed by the core, plus a filesystem FileStore.

SQLAlchemy implementations of the first three live in biofactor.database.
"""

import os
from typing import Any, Dict, List, Optional, Protocol

from biofactor.models import ListOptions


class ResourceStore(Protocol):
    def list(self, table: str, options: ListOptions) -> List[Dict[str, Any]]: ...

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]: ...

    def update(self, table: str, record_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete(self, table: str, record_id: Any) -> None: ...


class IdentityProvider(Protocol):
    def sign_in(self, email: str, password: str) -> str:
        """Return the subject id, or raise AuthenticationError."""

    def sign_out(self, subject_id: Optional[str] = None) -> None: ...


class ProfileStore(Protocol):
    def get_by_id(self, subject_id: str) -> Optional[Dict[str, Any]]: ...


class FileStore(Protocol):
    def upload(self, bucket: str, key: str, content: bytes, upsert: bool = False) -> str: ...


class LocalFileStore:
    """Stores uploads under ``root/<bucket>/<key>`` and serves them from ``base_url``."""

    def __init__(self, root: str, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def upload(self, bucket: str, key: str, content: bytes, upsert: bool = False) -> str:
        if os.path.sep in key or key.startswith("."):
            raise ValueError(f"Invalid upload key: {key!r}")

        folder = os.path.join(self.root, bucket)
        os.makedirs(folder, exist_ok=True)
        path = os.path.join(folder, key)

        mode = "wb" if upsert else "xb"
        with open(path, mode) as fh:
            fh.write(content)
        return f"{self.base_url}/{bucket}/{key}"
