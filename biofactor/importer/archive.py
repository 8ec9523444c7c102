"""
Archiving the original uploaded file, independent of the row commit path.
"""

import mimetypes
import os
import time
from datetime import datetime
from typing import Any, Dict, Optional

from biofactor.config import UPLOAD_BUCKET


def archive_key(filename: str, now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    return f"{int(now * 1000)}_{os.path.basename(filename)}"


def archive_upload(file_store, gateway, filename: str, content: bytes,
                   mime_type: Optional[str] = None, bucket: str = UPLOAD_BUCKET,
                   now: Optional[float] = None) -> Dict[str, Any]:
    """Upload the file and record its metadata in the ``files`` resource.

    A key collision is retried once as an overwrite.
    """
    key = archive_key(filename, now)
    try:
        url = file_store.upload(bucket, key, content)
    except FileExistsError:
        print(f"[WARN] {bucket}/{key} already exists, overwriting")
        url = file_store.upload(bucket, key, content, upsert=True)

    return gateway.create("files", {
        "filename": os.path.basename(filename),
        "path": key,
        "url": url,
        "mime_type": mime_type or mimetypes.guess_type(filename)[0],
        "size": len(content),
        "uploaded_at": datetime.utcnow().isoformat(),
    }, notify=False)
