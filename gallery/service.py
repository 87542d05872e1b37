# gallery/service.py
import os
from typing import Any, Dict, List, Optional

from gallery import db as dbmod
from gallery import monitoring
from gallery.blob_store import DatabaseBlobStore
from gallery.scheduler import Scheduler, scheduler as default_scheduler
from gallery.schemas import PromptList, PromptView
from gallery.worker import GenerationWorker

GENERATE_JOB = "generate"
IMAGE_GENERATION_ENABLED = os.getenv("IMAGE_GENERATION_ENABLED", "true").lower() in ("1", "true", "yes")
DEFAULT_LIST_COUNT = int(os.getenv("GALLERY_LIST_LIMIT", "10"))


def session_hue(session_id: str) -> int:
    """Stable 0-359 hue for a session id; same id, same card color."""
    h = 0
    # hash over UTF-16 code units so ids hash identically in the browser
    data = session_id.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
    return (360 * (abs(h) % 17)) // 17


class GalleryService:
    """Submission path and the recent-records projection used by the live query."""

    def __init__(self, scheduler: Optional[Scheduler] = None,
                 worker: Optional[GenerationWorker] = None, blob_store=None):
        self.blob_store = blob_store or DatabaseBlobStore()
        self.worker = worker or GenerationWorker(blob_store=self.blob_store)
        self.scheduler = scheduler or default_scheduler
        self.scheduler.register(GENERATE_JOB, self.worker.generate)

    def submit(self, session_id: str, prompt: str, output_type: str) -> str:
        """Insert a pending record and schedule its fulfillment; returns the prompt id."""
        prompt_id = dbmod.insert_prompt(session_id, prompt)
        try:
            self.scheduler.enqueue(
                GENERATE_JOB,
                {"prompt_id": prompt_id, "prompt": prompt, "output_type": output_type},
                delay_s=0,
            )
        except Exception:
            # insert + enqueue act as one unit: no pending record without a job
            dbmod.delete_prompt(prompt_id)
            raise
        monitoring.inc_submission(output_type)
        monitoring.logger.info(
            "Prompt submitted",
            extra={"prompt_id": prompt_id, "output_type": output_type, "prompt_preview": prompt[:200]},
        )
        return prompt_id

    def _view(self, rec: Dict[str, Any]) -> PromptView:
        result = rec["result"]
        if result is not None and result["type"] == "image":
            # resolved on every read; the stored value stays the blob ref
            result = {"type": "image", "value": self.blob_store.resolve(result["value"])}
        return PromptView(
            id=rec["prompt_id"],
            sessionId=rec["session_id"],
            prompt=rec["prompt"],
            result=result,
            creationTime=rec["created_at"],
            hue=session_hue(rec["session_id"]),
        )

    def list_recent(self, count: int = DEFAULT_LIST_COUNT) -> List[PromptView]:
        return [self._view(rec) for rec in dbmod.list_recent(count)]

    def list_recent_payload(self, count: int = DEFAULT_LIST_COUNT) -> Dict[str, Any]:
        """JSON-ready form shared by the HTTP and websocket endpoints."""
        return PromptList(prompts=self.list_recent(count)).model_dump(by_alias=True)
