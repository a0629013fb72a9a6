#!/usr/bin/env python3
"""
OCR service client for photographed Form 34A/34B sheets.

Contains: client-side file checks, the OcrResponse type parsed from the
service's loosely-typed JSON, and OcrClient which uploads an image and
returns the parsed response.

Nothing here touches a draft; merging is done by ocr_reconciler.
"""

import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import get_config
from logging_config import get_logger, LogContext
from result_types import FormType, coerce_count

logger = get_logger(__name__)

ALLOWED_OCR_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}
ALLOWED_OCR_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)


class OcrError(Exception):
    """Base class for OCR failures; the draft is never modified."""


class UnsupportedFileError(OcrError):
    """Rejected before upload (type, size or missing file)."""


class OcrServiceError(OcrError):
    """The OCR service failed or reported an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OcrResponseError(OcrError):
    """The OCR service answered with something other than a JSON object."""


def is_allowed_ocr_type(filename: str, mime_type: Optional[str] = None) -> bool:
    """JPEG, PNG or WEBP by MIME type OR file extension; either suffices."""
    mime_ok = (mime_type or "").lower() in ALLOWED_OCR_MIME_TYPES
    ext_ok = Path(filename or "").suffix.lower() in ALLOWED_OCR_EXTENSIONS
    return mime_ok or ext_ok


def validate_ocr_file(file_path: str, mime_type: Optional[str] = None, max_file_size: Optional[int] = None) -> tuple[bool, str]:
    """
    Validate an image before it is sent for OCR.

    Args:
        file_path: Path to the photographed form
        mime_type: MIME type reported by the upload source, if any
        max_file_size: Size limit in bytes (defaults to config)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not file_path:
        return False, "No file path provided"

    if not os.path.isfile(file_path):
        return False, "File not found"

    if not is_allowed_ocr_type(file_path, mime_type):
        return False, "Unsupported file type. Please upload a form image (JPG, JPEG, PNG or WEBP)."

    limit = max_file_size if max_file_size is not None else get_config().max_file_size
    try:
        size = os.path.getsize(file_path)
    except OSError as e:
        return False, f"Cannot read file: {e}"
    if size == 0:
        return False, "File is empty"
    if size > limit:
        return False, f"File too large: {size // (1024 * 1024)}MB (max {limit // (1024 * 1024)}MB)"

    return True, "OK"


def _optional_count(d: dict, *keys: str) -> Optional[int]:
    # None when absent, null or not a number; counts are floored and clamped
    for key in keys:
        value = d.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return coerce_count(value)
        if isinstance(value, str):
            try:
                float(value.strip())
            except ValueError:
                continue
            return coerce_count(value)
    return None


def _optional_text(d: dict, *keys: str) -> str:
    for key in keys:
        value = d.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


@dataclass
class OcrEntry:
    """One candidate row as read by the OCR engine."""
    candidate_name: str
    votes: int


@dataclass
class OcrResponse:
    """
    OCR result for one form.

    Optional numeric fields are None when the service did not report them;
    text fields are "" when absent or blank.
    """
    status: str = "success"
    entries: list[OcrEntry] = field(default_factory=list)
    rejected_votes: Optional[int] = None
    total_valid: Optional[int] = None
    total_votes: Optional[int] = None
    registered_voters: Optional[int] = None
    officer: str = ""
    form_serial: str = ""
    notes: str = ""
    stations_expected: Optional[int] = None
    stations_reported: Optional[int] = None
    entity_id: str = ""
    raw_ocr: str = ""
    message: str = ""

    @classmethod
    def from_payload(cls, data: dict) -> "OcrResponse":
        """Parse the service JSON, defaulting anything missing or malformed."""
        entries = []
        raw_entries = data.get("entries")
        if isinstance(raw_entries, list):
            for row in raw_entries:
                if not isinstance(row, dict):
                    continue
                name = row.get("candidate_name")
                entries.append(OcrEntry(
                    candidate_name=name if isinstance(name, str) else "",
                    votes=coerce_count(row.get("votes")),
                ))

        entity_id = data.get("station_id") or data.get("const_code") or ""

        return cls(
            status=str(data.get("status") or ""),
            entries=entries,
            rejected_votes=_optional_count(data, "rejected_votes"),
            total_valid=_optional_count(data, "total_valid"),
            total_votes=_optional_count(data, "total_votes"),
            registered_voters=_optional_count(data, "registered_voters", "registered_voters_sum"),
            officer=_optional_text(data, "presiding_officer", "returning_officer"),
            form_serial=_optional_text(data, "form_serial", "form34a_serial", "form34b_serial"),
            notes=_optional_text(data, "notes"),
            stations_expected=_optional_count(data, "stations_expected"),
            stations_reported=_optional_count(data, "stations_reported"),
            entity_id=str(entity_id),
            raw_ocr=data.get("raw_ocr") if isinstance(data.get("raw_ocr"), str) else "",
            message=_optional_text(data, "message"),
        )


class OcrClient:
    """
    Uploads form images to the OCR service.

    Example:
        client = OcrClient.from_config()
        response = client.upload("34a.jpg", FormType.FORM_34A, "101")
    """

    def __init__(
        self,
        urls: dict[FormType, str],
        timeout: int = 60,
        max_retries: int = 3,
        max_file_size: int = 10 * 1024 * 1024,
    ):
        self.urls = urls
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_file_size = max_file_size

    @classmethod
    def from_config(cls) -> "OcrClient":
        cfg = get_config()
        return cls(
            urls={FormType.FORM_34A: cfg.ocr_34a_url, FormType.FORM_34B: cfg.ocr_34b_url},
            timeout=cfg.ocr_timeout,
            max_retries=cfg.max_retries,
            max_file_size=cfg.max_file_size,
        )

    def check_file(self, file_path: str, mime_type: Optional[str] = None) -> None:
        """
        Raises:
            UnsupportedFileError: the file must not be uploaded
        """
        ok, message = validate_ocr_file(file_path, mime_type, self.max_file_size)
        if not ok:
            raise UnsupportedFileError(message)

    def _post(self, url: str, file_path: str, mime_type: str, form_data: dict) -> requests.Response:
        def send():
            with open(file_path, "rb") as f:
                files = {"file": (os.path.basename(file_path), f, mime_type)}
                return requests.post(url, files=files, data=form_data, timeout=self.timeout)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        return retrying(send)

    def upload(self, file_path: str, form_type: FormType, entity_id: str, mime_type: Optional[str] = None) -> OcrResponse:
        """
        Send a form image for OCR.

        Args:
            file_path: JPEG/PNG/WEBP image of the form
            form_type: FORM_34A (station) or FORM_34B (constituency)
            entity_id: Station id (34A) or constituency id (34B)
            mime_type: MIME type reported by the upload source, if any

        Returns:
            Parsed OcrResponse with status "success"

        Raises:
            UnsupportedFileError: rejected before any network call
            OcrServiceError: transport failure, HTTP error or error status
            OcrResponseError: body was not a JSON object
        """
        self.check_file(file_path, mime_type)

        content_type = mime_type or mimetypes.guess_type(file_path)[0] or "application/octet-stream"
        id_field = "station_id" if form_type is FormType.FORM_34A else "const_code"
        form_data = {id_field: str(entity_id)} if entity_id else {}

        with LogContext(logger, f"OCR {form_type.value} upload for {form_type.entity_label} {entity_id}"):
            try:
                response = self._post(self.urls[form_type], file_path, content_type, form_data)
            except requests.RequestException as e:
                raise OcrServiceError(f"OCR request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise OcrResponseError(f"Unexpected OCR server response (HTTP {response.status_code})") from e
        if not isinstance(data, dict):
            raise OcrResponseError(f"Unexpected OCR server response (HTTP {response.status_code})")

        if not response.ok or data.get("status") != "success":
            message = data.get("message") or f"OCR failed with HTTP {response.status_code}"
            raise OcrServiceError(str(message), status_code=response.status_code)

        result = OcrResponse.from_payload(data)
        logger.info(
            f"OCR {form_type.value} {entity_id}: {len(result.entries)} candidate rows, "
            f"rejected={result.rejected_votes}"
        )
        return result
