# gallery/blob_store.py
"""
Blob storage for generated media.

Records only ever hold the opaque blob_ref; URLs are built at read time by
resolve(), which returns None once the blob is gone instead of raising.

Env vars:
- PUBLIC_BASE_URL (default: empty -> relative URLs like /api/storage/<ref>)
"""

import os
import uuid
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from gallery import db as dbmod
from gallery import monitoring

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
STORAGE_ROUTE = "/api/storage"


class DatabaseBlobStore:
    """Keeps blob bytes in the stored_blobs table next to the prompt records."""

    def __init__(self, base_url: str = PUBLIC_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def store(self, data: bytes, content_type: str = "application/octet-stream") -> str:
        from gallery.models import StoredBlob
        blob_ref = uuid.uuid4().hex
        db: Session = dbmod.SessionLocal()
        try:
            db.add(StoredBlob(blob_ref=blob_ref, content_type=content_type,
                              size=len(data), data=data))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        monitoring.logger.info("Stored blob", extra={"blob_ref": blob_ref, "size": len(data)})
        return blob_ref

    def fetch(self, blob_ref: str) -> Optional[Tuple[bytes, str]]:
        from gallery.models import StoredBlob
        db: Session = dbmod.SessionLocal()
        try:
            blob = db.query(StoredBlob).filter(StoredBlob.blob_ref == blob_ref).first()
            if blob is None:
                return None
            return blob.data, blob.content_type
        finally:
            db.close()

    def exists(self, blob_ref: str) -> bool:
        from gallery.models import StoredBlob
        db: Session = dbmod.SessionLocal()
        try:
            return db.query(StoredBlob.id).filter(StoredBlob.blob_ref == blob_ref).first() is not None
        finally:
            db.close()

    def resolve(self, blob_ref: str) -> Optional[str]:
        """URL for the blob, or None if it has been deleted."""
        try:
            if not self.exists(blob_ref):
                return None
        except Exception:
            monitoring.logger.exception("Blob resolution failed", extra={"blob_ref": blob_ref})
            return None
        return f"{self.base_url}{STORAGE_ROUTE}/{blob_ref}"

    def delete(self, blob_ref: str) -> bool:
        from gallery.models import StoredBlob
        db: Session = dbmod.SessionLocal()
        try:
            deleted = (
                db.query(StoredBlob)
                .filter(StoredBlob.blob_ref == blob_ref)
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return bool(deleted)
