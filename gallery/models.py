# gallery/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text, LargeBinary
import datetime

from gallery.db import Base


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class PromptRecord(Base):
    __tablename__ = "prompts"

    # autoincrement id doubles as creation order
    id = Column(Integer, primary_key=True, index=True)
    prompt_id = Column(String(64), unique=True, index=True, nullable=False)
    session_id = Column(String(256), index=True, nullable=False)
    prompt = Column(Text, nullable=False, default="")
    # NULL while pending, else {"type": "text"|"image", "value": ...}
    result_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class StoredBlob(Base):
    __tablename__ = "stored_blobs"

    id = Column(Integer, primary_key=True, index=True)
    blob_ref = Column(String(64), unique=True, index=True, nullable=False)
    content_type = Column(String(128), nullable=False, default="application/octet-stream")
    size = Column(Integer, nullable=False, default=0)
    data = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(128), nullable=False)
    args_json = Column(Text, nullable=False, default="{}")
    state = Column(String(16), index=True, nullable=False, default="queued")
    run_at = Column(DateTime, nullable=False, default=_utcnow)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
