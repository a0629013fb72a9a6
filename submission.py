#!/usr/bin/env python3
"""
Results workflow: draft lifecycle and at-most-once submission.

ResultsWorkflow owns one draft (a polling station's 34A or a constituency's
34B) and moves it through FRESH -> DRAFTED -> SUBMITTED:

- every edit or OCR merge recomputes totals and is persisted immediately;
- save() only needs a well-formed draft (numbers coerced);
- submit() needs a valid draft and a successful remote round trip.

Before anything is sent, the per-entity submission guard is checked. Once a
submission is acknowledged the guard is written first, then the submitted
draft, so a crash between the two writes can only leave the entity locked,
never re-submittable.

Usage:
    workflow = ResultsWorkflow.open(station, candidates, store, guard, api_client, ocr_client)
    workflow.set_vote(0, "120")
    workflow.apply_ocr("form34a.jpg")
    workflow.submit()
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from draft_model import (
    coerce_draft,
    create_constituency_draft,
    create_station_draft,
    entries_match_candidates,
    set_count,
    set_text,
    set_vote,
    turnout,
)
from draft_store import DraftStore, SubmissionGuard
from draft_validation import ValidationIssue, validate
from logging_config import get_logger
from ocr_client import OcrClient, OcrResponse
from ocr_reconciler import merge_ocr
from result_types import (
    Candidate,
    Constituency,
    ConstituencyResultDraft,
    FormType,
    PollingStation,
    ResultDraft,
    now_ms,
)
from results_api import (
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    ResultsApiClient,
    ResultsApiError,
)

logger = get_logger(__name__)


class SubmissionState(Enum):
    FRESH = "fresh"          # Just created, all zero
    DRAFTED = "drafted"      # Edited or saved locally, not submitted
    SUBMITTED = "submitted"  # Remote acknowledgment received


class AlreadySubmittedError(Exception):
    """This entity was already submitted from this device."""


class DraftBusyError(Exception):
    """A remote call for this draft is still in flight."""


class DraftValidationError(Exception):
    """The draft failed validation and was not sent."""

    def __init__(self, issue: ValidationIssue):
        super().__init__(issue.message)
        self.issue = issue


class SubmissionError(Exception):
    """The remote endpoint did not acknowledge the submission."""

    def __init__(self, message: str, locked: bool = False):
        super().__init__(message)
        self.locked = locked


@dataclass
class SaveOutcome:
    """Result of save(): always saved locally, optionally synced remotely."""
    draft: ResultDraft
    synced: bool = False
    warning: Optional[str] = None


class ResultsWorkflow:
    """
    Single-draft state machine.

    All mutations are serialised by the caller's event loop; the busy lock
    only rejects edits attempted while an OCR upload or remote save for the
    same draft is outstanding.
    """

    def __init__(
        self,
        draft: ResultDraft,
        candidates: list[Candidate],
        store: DraftStore,
        guard: SubmissionGuard,
        api_client: Optional[ResultsApiClient] = None,
        ocr_client: Optional[OcrClient] = None,
        state: SubmissionState = SubmissionState.FRESH,
    ):
        self.draft = draft
        self.candidates = list(candidates)
        self.store = store
        self.guard = guard
        self.api_client = api_client
        self.ocr_client = ocr_client
        self._state = state
        self._busy = threading.Lock()

    @classmethod
    def open(
        cls,
        entity: Union[PollingStation, Constituency],
        candidates: list[Candidate],
        store: DraftStore,
        guard: SubmissionGuard,
        api_client: Optional[ResultsApiClient] = None,
        ocr_client: Optional[OcrClient] = None,
        resume: bool = True,
    ) -> "ResultsWorkflow":
        """
        Open the workflow for a station (34A) or constituency (34B).

        A submitted entity opens read-only in SUBMITTED. Otherwise a persisted
        draft is resumed if it mirrors the candidate list; if not, a fresh
        draft is created and persisted.
        """
        form_type = FormType.FORM_34A if isinstance(entity, PollingStation) else FormType.FORM_34B
        entity_id = str(entity.id)

        existing = store.read_draft(form_type, entity_id) if resume else None
        if existing is not None and not entries_match_candidates(existing, candidates):
            logger.warning(
                f"Persisted {form_type.value} draft for {entity_id} does not match the candidate list; starting fresh"
            )
            existing = None

        if guard.is_submitted(form_type, entity_id):
            draft = existing or cls._fresh(entity, candidates)
            draft.submitted = True
            return cls(draft, candidates, store, guard, api_client, ocr_client, SubmissionState.SUBMITTED)

        if existing is not None:
            return cls(existing, candidates, store, guard, api_client, ocr_client, SubmissionState.DRAFTED)

        workflow = cls(cls._fresh(entity, candidates), candidates, store, guard, api_client, ocr_client)
        workflow._persist()
        return workflow

    @staticmethod
    def _fresh(entity, candidates: list[Candidate]) -> ResultDraft:
        if isinstance(entity, PollingStation):
            return create_station_draft(entity, candidates)
        return create_constituency_draft(entity, candidates)

    @property
    def state(self) -> SubmissionState:
        return self._state

    @property
    def form_type(self) -> FormType:
        return self.draft.form_type

    @property
    def entity_id(self) -> str:
        return self.draft.entity_id

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def is_submitted(self) -> bool:
        return self._state is SubmissionState.SUBMITTED or self.guard.is_submitted(self.form_type, self.entity_id)

    def turnout(self) -> float:
        return turnout(self.draft)

    def validate(self) -> Optional[ValidationIssue]:
        return validate(self.draft, self.candidates)

    @contextmanager
    def _in_flight(self):
        if not self._busy.acquire(blocking=False):
            raise DraftBusyError(f"{self.form_type.value} {self.entity_id} has a request in progress")
        try:
            yield
        finally:
            self._busy.release()

    def _check_editable(self) -> None:
        if self.is_submitted:
            raise AlreadySubmittedError(
                f"Results for {self.form_type.entity_label} {self.entity_id} were already submitted."
            )
        if self.busy:
            raise DraftBusyError(f"{self.form_type.value} {self.entity_id} has a request in progress")

    def _persist(self) -> None:
        self.store.write_draft(self.draft)

    def _apply(self, draft: ResultDraft) -> ResultDraft:
        self.draft = draft
        self._persist()
        self._state = SubmissionState.DRAFTED
        return draft

    # ── Edits ────────────────────────────────────────────────────────────

    def set_vote(self, candidate_index: int, raw_value) -> ResultDraft:
        self._check_editable()
        return self._apply(set_vote(self.draft, candidate_index, raw_value))

    def set_count(self, field_name: str, raw_value) -> ResultDraft:
        self._check_editable()
        return self._apply(set_count(self.draft, field_name, raw_value))

    def set_text(self, field_name: str, value: Optional[str]) -> ResultDraft:
        self._check_editable()
        return self._apply(set_text(self.draft, field_name, value))

    def apply_ocr(self, file_path: str, mime_type: Optional[str] = None) -> OcrResponse:
        """
        Upload a form image and merge the OCR result into the draft.

        The draft is left untouched if the file is rejected or the OCR call
        fails; the OcrError propagates for the operator to retry.
        """
        self._check_editable()
        if self.ocr_client is None:
            raise RuntimeError("No OCR client configured")

        self.ocr_client.check_file(file_path, mime_type)
        with self._in_flight():
            ocr = self.ocr_client.upload(file_path, self.form_type, self.entity_id, mime_type)
        self.merge_ocr_response(ocr)
        return ocr

    def merge_ocr_response(self, ocr: OcrResponse) -> ResultDraft:
        """Merge an already-obtained OCR response (not auto-submitted)."""
        self._check_editable()
        return self._apply(merge_ocr(self.draft, ocr, self.candidates))

    # ── Save / submit ────────────────────────────────────────────────────

    def save(self) -> SaveOutcome:
        """
        Persist the draft locally (FRESH/DRAFTED -> DRAFTED).

        Constituency drafts are also synced to the server with status
        "draft" so the server-assigned form id is kept for later updates. A
        failed sync still saves locally and is reported as a warning.
        """
        self._check_editable()
        draft = coerce_draft(self.draft)
        draft.touch()
        draft.last_saved_at = now_ms()

        if isinstance(draft, ConstituencyResultDraft) and self.api_client is not None:
            try:
                with self._in_flight():
                    result = self.api_client.save(draft, self.candidates, STATUS_DRAFT)
            except (ResultsApiError, ValueError) as e:
                self._apply(draft)
                logger.warning(f"34B {self.entity_id} saved locally; draft sync failed: {e}")
                return SaveOutcome(draft, synced=False, warning=f"Saved locally. Draft sync failed: {e}")
            if result.backend_id is not None:
                draft.backend_id = result.backend_id
            self._apply(draft)
            return SaveOutcome(draft, synced=True)

        self._apply(draft)
        logger.info(f"{self.form_type.value} {self.entity_id} saved locally")
        return SaveOutcome(draft)

    def submit(self) -> ResultDraft:
        """
        Validate and submit the draft (DRAFTED -> SUBMITTED).

        Raises:
            AlreadySubmittedError: guard already set; nothing is sent
            DraftBusyError: another request for this draft is in flight
            DraftValidationError: the draft is invalid; nothing is sent
            SubmissionError: the remote call failed; the guard is not set
        """
        if self.is_submitted:
            logger.warning(f"Refusing duplicate submission for {self.form_type.value} {self.entity_id}")
            raise AlreadySubmittedError(
                f"Results for {self.form_type.entity_label} {self.entity_id} were already submitted."
            )
        if self.busy:
            raise DraftBusyError(f"{self.form_type.value} {self.entity_id} has a request in progress")
        if self.api_client is None:
            raise RuntimeError("No results API client configured")

        issue = self.validate()
        if issue is not None:
            raise DraftValidationError(issue)

        if self._state is SubmissionState.FRESH:
            self._apply(self.draft)

        try:
            with self._in_flight():
                result = self.api_client.save(self.draft, self.candidates, STATUS_SUBMITTED)
        except ResultsApiError as e:
            if e.locked:
                message = f"This Form {self.form_type.value} is locked and can't be edited."
            else:
                message = str(e)
            logger.error(f"Submission failed for {self.form_type.value} {self.entity_id}: {e}")
            raise SubmissionError(message, locked=e.locked) from e
        except ValueError as e:
            raise SubmissionError(str(e)) from e

        submitted = self.draft.copy()
        submitted.submitted = True
        submitted.touch()
        submitted.last_saved_at = now_ms()
        if result.backend_id is not None:
            submitted.backend_id = result.backend_id

        self.guard.mark_submitted(self.form_type, self.entity_id)
        self.draft = submitted
        self._persist()
        self._state = SubmissionState.SUBMITTED
        logger.info(f"{self.form_type.value} {self.entity_id} submitted (backend id {submitted.backend_id})")
        return submitted
