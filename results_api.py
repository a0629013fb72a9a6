#!/usr/bin/env python3
"""
Client for the remote results endpoints (Form 34A and 34B saves).

Builds the wire payloads from a draft and the canonical candidate list and
posts them with ``requests``. Transport failures (connection errors,
timeouts) are retried a bounded number of times with exponential backoff
via ``tenacity``; HTTP errors and application-level rejections are not
retried and surface as ResultsApiError.

Usage:
    from results_api import ResultsApiClient

    client = ResultsApiClient.from_config()
    result = client.save(draft, candidates, status="submitted")
    print(result.backend_id)
"""

from dataclasses import dataclass, field
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
from result_types import (
    Candidate,
    CandidateId,
    ConstituencyResultDraft,
    ResultDraft,
    StationResultDraft,
    coerce_count,
)

logger = get_logger(__name__)

STATION_RESULTS_PATH = "/president/save_pres_results.php"
CONSTITUENCY_RESULTS_PATH = "/president/save_pres_34b.php"

STATUS_DRAFT = "draft"
STATUS_SUBMITTED = "submitted"

SOURCE_MODE_34B = "manual_from_34B"

# Failures where the request may never have reached the server
TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)


class ResultsApiError(Exception):
    """The results endpoint rejected a save or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def locked(self) -> bool:
        """True if the remote record is no longer editable."""
        return "locked" in str(self).lower()


@dataclass
class SaveResult:
    """Successful save acknowledgment."""
    status: str
    backend_id: Optional[CandidateId] = None
    raw: dict = field(default_factory=dict)


def build_entries(draft: ResultDraft, candidates: list[Candidate]) -> list[dict]:
    """
    Wire entries built from the canonical candidate list, taking votes from
    the index-aligned draft entries.

    Raises:
        ValueError: a candidate id is not a positive integer, or ids repeat
    """
    entries = []
    for idx, candidate in enumerate(candidates):
        try:
            id_num = int(str(candidate.id).strip())
        except ValueError:
            id_num = 0
        if id_num <= 0:
            raise ValueError(f'Invalid candidate id "{candidate.id}" at index {idx}')
        votes = coerce_count(draft.entries[idx].votes) if idx < len(draft.entries) else 0
        entries.append({"candidate_id": id_num, "votes": votes})

    if len({e["candidate_id"] for e in entries}) != len(entries):
        raise ValueError("Duplicate or missing candidate IDs in submission.")
    return entries


def _or_none(value):
    return value if value not in ("", None) else None


def build_station_payload(draft: StationResultDraft, candidates: list[Candidate], status: str) -> dict:
    """Form 34A save payload."""
    return {
        "station_id": draft.station_id,
        "entries": build_entries(draft, candidates),
        "rejected_votes": coerce_count(draft.rejected_votes),
        "disputed_votes": coerce_count(draft.disputed_votes),
        "spoilt_votes": coerce_count(draft.spoilt_votes),
        "total_valid": draft.total_valid,
        "total_votes": draft.total_votes,
        "registered_voters_snap": draft.registered_voters,
        "presiding_officer": _or_none(draft.presiding_officer),
        "form34a_serial": _or_none(draft.form34a_ref),
        "remarks": _or_none(draft.remarks),
        "polling_date": _or_none(draft.polling_date),
        "poll_open_time": _or_none(draft.opening_time),
        "poll_close_time": _or_none(draft.closing_time),
        "agents_signed": _or_none(draft.agents_signed),
        "agents_refused": _or_none(draft.agents_refused),
        "refusal_reasons": _or_none(draft.refusal_reasons),
        "status": status,
    }


def build_constituency_payload(draft: ConstituencyResultDraft, candidates: list[Candidate], status: str) -> dict:
    """Form 34B save payload. ``form34b_id`` is sent once the server has assigned one."""
    payload = {
        "const_code": draft.constituency_id,
        "entries": build_entries(draft, candidates),
        "rejected_votes": coerce_count(draft.rejected_votes),
        "total_valid": draft.total_valid,
        "stations_expected": draft.stations_expected,
        "stations_reported": draft.stations_reported,
        "registered_voters_sum": draft.registered_voters,
        "source_mode": SOURCE_MODE_34B,
        "compiled_by_agent_id": None,
        "status": status,
        "review_notes": _or_none(draft.remarks),
    }
    if draft.backend_id:
        payload["form34b_id"] = int(draft.backend_id)
    return payload


def build_payload(draft: ResultDraft, candidates: list[Candidate], status: str) -> dict:
    if isinstance(draft, StationResultDraft):
        return build_station_payload(draft, candidates, status)
    return build_constituency_payload(draft, candidates, status)


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or response.reason or "Request failed."


class ResultsApiClient:
    """
    Posts draft and final results to the results endpoints.

    Args:
        base_url: Endpoint root, e.g. "https://example.org/API"
        token: Optional bearer token
        timeout: Per-request timeout in seconds
        max_retries: Attempts for transport-level failures
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 12,
        max_retries: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries

    @classmethod
    def from_config(cls) -> "ResultsApiClient":
        cfg = get_config()
        return cls(
            base_url=cfg.results_api_base_url,
            token=cfg.api_token,
            timeout=cfg.api_timeout,
            max_retries=cfg.max_retries,
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, url: str, payload: dict) -> requests.Response:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        return retrying(requests.post, url, json=payload, headers=self._headers(), timeout=self.timeout)

    def post_results(self, path: str, payload: dict) -> dict:
        """
        POST a payload and return the decoded success body.

        Raises:
            ResultsApiError: network failure, HTTP error, non-JSON body or a
                non-"success" status
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._post(url, payload)
        except requests.RequestException as e:
            raise ResultsApiError(f"Network error: {e}") from e

        if not response.ok:
            raise ResultsApiError(
                f"Server error ({response.status_code}): {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResultsApiError(
                f"Unexpected server response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise ResultsApiError("Server returned no response.", status_code=response.status_code)
        if data.get("status") != "success":
            raise ResultsApiError(
                str(data.get("message") or "Save was not accepted by the server."),
                status_code=response.status_code,
            )
        return data

    def save(self, draft: ResultDraft, candidates: list[Candidate], status: str) -> SaveResult:
        """Save a draft remotely with status "draft" or "submitted"."""
        payload = build_payload(draft, candidates, status)
        if isinstance(draft, StationResultDraft):
            path, id_key = STATION_RESULTS_PATH, "result_id"
        else:
            path, id_key = CONSTITUENCY_RESULTS_PATH, "form34b_id"

        with LogContext(logger, f"Saving {draft.form_type.value} {draft.entity_id} ({status})"):
            data = self.post_results(path, payload)

        backend_id = data.get(id_key, data.get("id"))
        logger.info(f"{draft.form_type.value} {draft.entity_id} saved as {status} (backend id {backend_id})")
        return SaveResult(status=status, backend_id=backend_id, raw=data)
