#!/usr/bin/env python3
"""
Unit tests for submission.py (results workflow state machine).

Run with: python tests/test_submission.py
"""

import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from draft_store import DraftStore, JsonFileStorage, MemoryStorage, SubmissionGuard, draft_key
from draft_validation import ValidationCode
from ocr_client import OcrClient, OcrResponse, OcrServiceError, UnsupportedFileError
from result_types import Candidate, Constituency, FormType, PollingStation
from results_api import ResultsApiClient, ResultsApiError, SaveResult
from submission import (
    AlreadySubmittedError,
    DraftBusyError,
    DraftValidationError,
    ResultsWorkflow,
    SubmissionError,
    SubmissionState,
)

CANDIDATES = [Candidate(id=1, name="Jane Doe"), Candidate(id=2, name="John Roe")]
STATION = PollingStation(id="101", name="Kilimani Primary", registered_voters=300)

OCR_RESULT = OcrResponse.from_payload({
    "status": "success",
    "entries": [
        {"candidate_name": "JANE DOE (XYZ)", "votes": 120},
        {"candidate_name": "john roe", "votes": 80},
    ],
    "rejected_votes": 5,
    "notes": "Clear scan",
})


class WorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.storage = MemoryStorage()
        self.store = DraftStore(self.storage)
        self.guard = SubmissionGuard(self.storage)
        self.api = mock.Mock(spec=ResultsApiClient)
        self.api.save.return_value = SaveResult(status="submitted", backend_id=501)
        self.ocr = mock.Mock(spec=OcrClient)
        self.ocr.upload.return_value = OCR_RESULT

    def open(self, entity=STATION, **kwargs):
        return ResultsWorkflow.open(entity, CANDIDATES, self.store, self.guard, self.api, self.ocr, **kwargs)


class TestOpen(WorkflowTestCase):
    """Tests for opening a workflow."""

    def test_fresh_draft_persisted(self):
        workflow = self.open()
        self.assertEqual(workflow.state, SubmissionState.FRESH)
        self.assertEqual(self.store.read_station_draft("101").entries, workflow.draft.entries)

    def test_resumes_persisted_draft(self):
        self.open().set_vote(0, "42")
        workflow = self.open()
        self.assertEqual(workflow.state, SubmissionState.DRAFTED)
        self.assertEqual(workflow.draft.entries[0].votes, 42)

    def test_mismatched_persisted_draft_replaced(self):
        self.open().set_vote(0, "42")
        candidates = CANDIDATES + [Candidate(id=3, name="New Entrant")]
        workflow = ResultsWorkflow.open(STATION, candidates, self.store, self.guard, self.api, self.ocr)
        self.assertEqual(workflow.state, SubmissionState.FRESH)
        self.assertEqual([e.votes for e in workflow.draft.entries], [0, 0, 0])

    def test_corrupt_persisted_draft_regenerated(self):
        self.storage.set("draft:form34A:101", "{broken")
        workflow = self.open()
        self.assertEqual(workflow.state, SubmissionState.FRESH)
        self.assertEqual(len(workflow.draft.entries), 2)

    def test_undecodable_draft_file_regenerated(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = JsonFileStorage(tmp)
            storage._path(draft_key(FormType.FORM_34A, "101")).write_bytes(b'{"stationId": "101", "\xff\xfe')
            workflow = ResultsWorkflow.open(
                STATION, CANDIDATES, DraftStore(storage), SubmissionGuard(storage), self.api, self.ocr
            )
            self.assertEqual(workflow.state, SubmissionState.FRESH)
            self.assertEqual(DraftStore(storage).read_station_draft("101").entries, workflow.draft.entries)

    def test_guard_opens_submitted(self):
        self.guard.mark_submitted(FormType.FORM_34A, "101")
        workflow = self.open()
        self.assertEqual(workflow.state, SubmissionState.SUBMITTED)
        self.assertTrue(workflow.draft.submitted)


class TestEdits(WorkflowTestCase):
    """Tests for edits and OCR merges through the workflow."""

    def test_edit_persists_and_drafts(self):
        workflow = self.open()
        workflow.set_vote(1, "-7")
        workflow.set_count("rejected_votes", "3")
        workflow.set_text("remarks", "Late opening")
        self.assertEqual(workflow.state, SubmissionState.DRAFTED)

        stored = self.store.read_station_draft("101")
        self.assertEqual(stored.entries[1].votes, 0)
        self.assertEqual(stored.total_votes, 3)
        self.assertEqual(stored.remarks, "Late opening")

    def test_apply_ocr(self):
        workflow = self.open()
        workflow.apply_ocr("form.jpg")

        self.ocr.upload.assert_called_once_with("form.jpg", FormType.FORM_34A, "101", None)
        draft = self.store.read_station_draft("101")
        self.assertEqual([e.votes for e in draft.entries], [120, 80])
        self.assertEqual((draft.total_valid, draft.total_votes), (200, 205))
        self.assertEqual(draft.remarks, "Clear scan")
        self.assertFalse(draft.submitted)
        self.api.save.assert_not_called()

    def test_rejected_file_leaves_draft(self):
        workflow = self.open()
        workflow.set_vote(0, "9")
        before = workflow.draft.to_dict()
        self.ocr.check_file.side_effect = UnsupportedFileError("Unsupported file type")

        with self.assertRaises(UnsupportedFileError):
            workflow.apply_ocr("form.pdf")
        self.ocr.upload.assert_not_called()
        self.assertEqual(workflow.draft.to_dict(), before)

    def test_ocr_failure_leaves_draft(self):
        workflow = self.open()
        workflow.set_vote(0, "9")
        before = self.storage.get("draft:form34A:101")
        self.ocr.upload.side_effect = OcrServiceError("OCR failed with HTTP 500")

        with self.assertRaises(OcrServiceError):
            workflow.apply_ocr("form.jpg")
        self.assertEqual(self.storage.get("draft:form34A:101"), before)
        self.assertFalse(workflow.busy)

    def test_busy_blocks_edits(self):
        workflow = self.open()

        def upload(*args):
            with self.assertRaises(DraftBusyError):
                workflow.set_vote(0, "1")
            with self.assertRaises(DraftBusyError):
                workflow.submit()
            return OCR_RESULT

        self.ocr.upload.side_effect = upload
        workflow.apply_ocr("form.jpg")
        self.assertEqual(workflow.draft.entries[0].votes, 120)


class TestSave(WorkflowTestCase):
    """Tests for save()."""

    def test_station_save_is_local(self):
        workflow = self.open()
        workflow.draft.entries[0].votes = "17"
        outcome = workflow.save()
        self.assertFalse(outcome.synced)
        self.assertEqual(workflow.state, SubmissionState.DRAFTED)
        self.assertEqual(workflow.draft.entries[0].votes, 17)
        self.assertIsNotNone(workflow.draft.last_saved_at)
        self.api.save.assert_not_called()

    def test_save_does_not_require_validity(self):
        workflow = self.open()
        workflow.set_vote(0, "1000")
        self.assertEqual(workflow.validate().code, ValidationCode.TURNOUT_EXCEEDS_REGISTRATION)
        workflow.save()
        self.assertEqual(self.store.read_station_draft("101").entries[0].votes, 1000)

    def test_constituency_save_syncs(self):
        self.api.save.return_value = SaveResult(status="draft", backend_id=31)
        workflow = self.open(Constituency(id=7))
        outcome = workflow.save()

        self.assertTrue(outcome.synced)
        self.assertEqual(self.api.save.call_args[0][2], "draft")
        self.assertEqual(self.store.read_constituency_draft(7).backend_id, 31)

    def test_constituency_sync_failure_saves_locally(self):
        self.api.save.side_effect = ResultsApiError("Network error: offline")
        workflow = self.open(Constituency(id=7))
        workflow.set_vote(0, "10")
        outcome = workflow.save()

        self.assertFalse(outcome.synced)
        self.assertIn("Saved locally", outcome.warning)
        self.assertEqual(self.store.read_constituency_draft(7).entries[0].votes, 10)


class TestSubmit(WorkflowTestCase):
    """Tests for submit() and the at-most-once guard."""

    def test_submit_success(self):
        workflow = self.open()
        workflow.merge_ocr_response(OCR_RESULT)
        submitted = workflow.submit()

        self.assertEqual(workflow.state, SubmissionState.SUBMITTED)
        self.assertTrue(submitted.submitted)
        self.assertEqual(submitted.backend_id, 501)
        self.assertTrue(self.guard.is_submitted(FormType.FORM_34A, "101"))
        self.assertTrue(self.store.read_station_draft("101").submitted)
        self.assertEqual(self.api.save.call_args[0][2], "submitted")

    def test_second_submit_refused_without_network(self):
        workflow = self.open()
        workflow.submit()
        self.api.save.reset_mock()

        with self.assertRaises(AlreadySubmittedError):
            workflow.submit()
        with self.assertRaises(AlreadySubmittedError):
            workflow.set_vote(0, "1")

        # Clearing the draft and reopening does not re-enable submission
        self.store.clear_draft(FormType.FORM_34A, "101")
        reopened = self.open()
        self.assertEqual(reopened.state, SubmissionState.SUBMITTED)
        with self.assertRaises(AlreadySubmittedError):
            reopened.submit()
        self.api.save.assert_not_called()

    def test_guard_written_before_draft(self):
        workflow = self.open()
        workflow.set_vote(0, "10")
        calls = []
        original_set = self.storage.set

        def recording_set(key, value):
            calls.append(key)
            original_set(key, value)

        self.storage.set = recording_set
        workflow.submit()
        self.assertEqual(calls, ["results_submitted_101", "draft:form34A:101"])

    def test_invalid_draft_not_sent(self):
        workflow = self.open()
        workflow.set_vote(0, "290")
        workflow.set_count("rejected_votes", "20")
        with self.assertRaises(DraftValidationError) as ctx:
            workflow.submit()
        self.assertEqual(ctx.exception.issue.code, ValidationCode.TURNOUT_EXCEEDS_REGISTRATION)
        self.api.save.assert_not_called()
        self.assertEqual(workflow.state, SubmissionState.DRAFTED)

    def test_remote_failure_keeps_drafted(self):
        self.api.save.side_effect = ResultsApiError("Server error (500): boom", status_code=500)
        workflow = self.open()
        workflow.set_vote(0, "10")
        with self.assertRaises(SubmissionError):
            workflow.submit()

        self.assertEqual(workflow.state, SubmissionState.DRAFTED)
        self.assertFalse(self.guard.is_submitted(FormType.FORM_34A, "101"))
        self.assertFalse(self.store.read_station_draft("101").submitted)

        # Retry succeeds
        self.api.save.side_effect = None
        workflow.submit()
        self.assertEqual(workflow.state, SubmissionState.SUBMITTED)

    def test_locked_message(self):
        self.api.save.side_effect = ResultsApiError("Form is locked")
        workflow = self.open(Constituency(id=7))
        with self.assertRaises(SubmissionError) as ctx:
            workflow.submit()
        self.assertTrue(ctx.exception.locked)
        self.assertIn("locked", str(ctx.exception))
        self.assertFalse(self.guard.is_submitted(FormType.FORM_34B, "7"))

    def test_fresh_draft_can_submit(self):
        workflow = self.open()
        workflow.submit()
        self.assertEqual(workflow.state, SubmissionState.SUBMITTED)


if __name__ == "__main__":
    unittest.main(verbosity=2)
