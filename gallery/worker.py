# gallery/worker.py
"""
Fulfillment job: call the provider for one prompt record and finalize it.

Scheduled -> Calling-Provider -> Succeeded | Failed. On failure the record is
deleted and GenerationFailed is raised, which ends the job; nothing is retried.
"""

import time
from typing import Callable, Dict, List, Optional

# Import modules (not bare functions) so monkeypatching in tests works correctly
import gallery.llm_wrapper as _llm
import gallery.credentials as _credentials
from gallery import db as dbmod
from gallery import monitoring
from gallery.blob_store import DatabaseBlobStore
from gallery.errors import E_INTERNAL, GenerationFailed

SYSTEM_PROMPT = "Try to come up with the most hilarious answer to what the user says."


def build_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


class GenerationWorker:
    def __init__(self, resolve_credential: Optional[Callable[[], str]] = None,
                 blob_store=None):
        self._resolve_credential = resolve_credential
        self.blob_store = blob_store or DatabaseBlobStore()

    def resolve_credential(self) -> str:
        # looked up at call time so tests can patch gallery.credentials
        resolver = self._resolve_credential or _credentials.resolve_credential
        return resolver()

    def _api_key(self) -> str:
        # mock mode never talks to the provider, so don't fetch a key either
        if _llm.MOCK_OPENAI:
            return ""
        return self.resolve_credential()

    def generate(self, prompt_id: str, prompt: str, output_type: str):
        if output_type == "text":
            self.generate_text(prompt_id, prompt)
        elif output_type == "image":
            self.generate_image(prompt_id, prompt)
        else:
            dbmod.delete_prompt(prompt_id)
            raise GenerationFailed(f"Unknown output type {output_type!r}", prompt_id, "E_BAD_OUTPUT_TYPE")

    def generate_text(self, prompt_id: str, prompt: str):
        start = time.time()
        try:
            resp = _llm.chat_completion(build_messages(prompt), api_key=self._api_key())
            stored = dbmod.set_text_result(prompt_id, resp["text"])
        except Exception as e:
            raise self._generation_failed(prompt_id, "text", start, e) from e

        monitoring.observe_generation(start, "text", "success")
        if not stored:
            monitoring.logger.warning("Prompt no longer pending; text result dropped",
                                      extra={"prompt_id": prompt_id})
            return
        monitoring.logger.info("Text result stored",
                               extra={"prompt_id": prompt_id, "response_id": resp.get("response_id")})

    def generate_image(self, prompt_id: str, prompt: str):
        start = time.time()
        blob_ref = None
        try:
            url = _llm.generate_image(prompt, api_key=self._api_key())
            data, content_type = _llm.download_image(url)
            blob_ref = self.blob_store.store(data, content_type)
            stored = dbmod.set_image_result(prompt_id, blob_ref)
        except Exception as e:
            if blob_ref is not None:
                self._discard_blob(blob_ref)
            raise self._generation_failed(prompt_id, "image", start, e) from e

        monitoring.observe_generation(start, "image", "success")
        if not stored:
            # record vanished meanwhile; don't leave an orphaned blob behind
            self._discard_blob(blob_ref)
            monitoring.logger.warning("Prompt no longer pending; image result dropped",
                                      extra={"prompt_id": prompt_id, "blob_ref": blob_ref})
            return
        monitoring.logger.info("Image result stored", extra={"prompt_id": prompt_id, "blob_ref": blob_ref})

    def _discard_blob(self, blob_ref: str):
        try:
            self.blob_store.delete(blob_ref)
        except Exception:
            monitoring.logger.exception("Could not remove unused blob", extra={"blob_ref": blob_ref})

    def _generation_failed(self, prompt_id: str, output_type: str, start: float,
                           cause: Exception) -> GenerationFailed:
        """Delete the in-flight record and build the terminal job error."""
        error_code = getattr(cause, "error_code", E_INTERNAL)
        monitoring.observe_generation(start, output_type, "fail")
        monitoring.logger.error(
            "Generation failed",
            extra={"prompt_id": prompt_id, "output_type": output_type,
                   "error_code": error_code, "cause": f"{type(cause).__name__}: {cause}"},
        )
        dbmod.delete_prompt(prompt_id)
        return GenerationFailed(str(cause), prompt_id, error_code)
