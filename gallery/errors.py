# gallery/errors.py
"""
Error kinds raised along the fulfillment path.

Every error carries a stable `error_code` (same convention as the API error
payloads) so logs and job records can be grouped without parsing messages.
"""

from typing import Optional

E_MISSING_CREDENTIAL = "E_MISSING_CREDENTIAL"
E_PROVIDER_HTTP = "E_PROVIDER_HTTP"
E_MEDIA_DOWNLOAD = "E_MEDIA_DOWNLOAD"
E_SCHEMA_VALIDATION = "E_SCHEMA_VALIDATION"
E_GENERATION_FAILED = "E_GENERATION_FAILED"
E_INTERNAL = "E_INTERNAL"


class GalleryError(Exception):
    error_code = E_INTERNAL


class MissingCredential(GalleryError):
    error_code = E_MISSING_CREDENTIAL


class ProviderHTTPError(GalleryError):
    error_code = E_PROVIDER_HTTP

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MediaDownloadError(GalleryError):
    error_code = E_MEDIA_DOWNLOAD

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SchemaValidationError(GalleryError):
    error_code = E_SCHEMA_VALIDATION


class GenerationFailed(GalleryError):
    """Terminal job error: the record has already been deleted when this is raised."""

    error_code = E_GENERATION_FAILED

    def __init__(self, message: str, prompt_id: str, cause_code: str):
        super().__init__(message)
        self.prompt_id = prompt_id
        self.cause_code = cause_code
