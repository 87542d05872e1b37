# gallery/db.py
import os
import json
import uuid
from typing import Optional, Dict, Any, List

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from gallery.live import broker
from gallery.schemas import validate_result

# Default dev DB; on Vercel api/index.py sets DATABASE_URL to /tmp before import
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ai_gallery.db")


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    # Create tables if they don't exist; existing tables are never altered
    import gallery.models as models  # noqa: F841
    Base.metadata.create_all(bind=engine)


def _to_dict(rec) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "prompt_id": rec.prompt_id,
        "session_id": rec.session_id,
        "prompt": rec.prompt,
        "result": json.loads(rec.result_json) if rec.result_json else None,
        "created_at": rec.created_at.isoformat() + "Z",
    }


def insert_prompt(session_id: str, prompt: str) -> str:
    """Insert a pending record and return its prompt_id."""
    from gallery.models import PromptRecord
    prompt_id = str(uuid.uuid4())
    db: Session = SessionLocal()
    try:
        db.add(PromptRecord(prompt_id=prompt_id, session_id=session_id,
                            prompt=prompt, result_json=None))
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    broker.publish()
    return prompt_id


def _set_result(prompt_id: str, result: Dict[str, Any]) -> bool:
    from gallery.models import PromptRecord
    payload = json.dumps(validate_result(result))
    db: Session = SessionLocal()
    try:
        # only a pending record may take a terminal result
        updated = (
            db.query(PromptRecord)
            .filter(PromptRecord.prompt_id == prompt_id, PromptRecord.result_json.is_(None))
            .update({PromptRecord.result_json: payload}, synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    if updated:
        broker.publish()
    return bool(updated)


def set_text_result(prompt_id: str, text: str) -> bool:
    return _set_result(prompt_id, {"type": "text", "value": text})


def set_image_result(prompt_id: str, blob_ref: str) -> bool:
    return _set_result(prompt_id, {"type": "image", "value": blob_ref})


def delete_prompt(prompt_id: str) -> bool:
    from gallery.models import PromptRecord
    db: Session = SessionLocal()
    try:
        deleted = (
            db.query(PromptRecord)
            .filter(PromptRecord.prompt_id == prompt_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    if deleted:
        broker.publish()
    return bool(deleted)


def get_prompt(prompt_id: str) -> Optional[Dict[str, Any]]:
    """
    Return the stored record as a dict or None.
    """
    from gallery.models import PromptRecord
    db: Session = SessionLocal()
    try:
        rec = db.query(PromptRecord).filter(PromptRecord.prompt_id == prompt_id).first()
        return _to_dict(rec) if rec else None
    finally:
        db.close()


def list_recent(count: int) -> List[Dict[str, Any]]:
    """Newest-first list of at most `count` records."""
    from gallery.models import PromptRecord
    if count < 0:
        raise ValueError("count must be >= 0")
    if count == 0:
        return []
    db: Session = SessionLocal()
    try:
        rows = db.query(PromptRecord).order_by(PromptRecord.id.desc()).limit(count).all()
        return [_to_dict(r) for r in rows]
    finally:
        db.close()
