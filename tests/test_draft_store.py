#!/usr/bin/env python3
"""
Unit tests for draft_store.py.

Run with: python tests/test_draft_store.py
"""

import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from draft_model import create_constituency_draft, create_station_draft, set_vote
from draft_store import (
    DraftStore,
    JsonFileStorage,
    MemoryStorage,
    SubmissionGuard,
    constituency_draft_key,
    guard_key,
    station_draft_key,
)
from result_types import Candidate, Constituency, FormType, PollingStation

CANDIDATES = [Candidate(id=1, name="Jane Doe"), Candidate(id=2, name="John Roe")]


class TestKeys(unittest.TestCase):
    """Tests for storage key layout."""

    def test_station_and_constituency_keys_differ(self):
        self.assertEqual(station_draft_key(7), "draft:form34A:7")
        self.assertEqual(constituency_draft_key(7), "draft:form34B:7")
        self.assertNotEqual(guard_key(FormType.FORM_34A, 7), guard_key(FormType.FORM_34B, 7))
        self.assertEqual(guard_key(FormType.FORM_34A, 7), "results_submitted_7")


class TestDraftStore(unittest.TestCase):
    """Tests for draft persistence on both storage backends."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.backends = [MemoryStorage(), JsonFileStorage(self.tmp.name)]

    def tearDown(self):
        self.tmp.cleanup()

    def test_write_read_clear(self):
        for storage in self.backends:
            with self.subTest(storage=type(storage).__name__):
                store = DraftStore(storage)
                draft = set_vote(create_station_draft(PollingStation(id="101"), CANDIDATES), 0, "12")
                store.write_draft(draft)

                restored = store.read_station_draft("101")
                self.assertEqual(restored, draft)
                self.assertIsNone(store.read_constituency_draft("101"))

                store.clear_draft(FormType.FORM_34A, "101")
                self.assertIsNone(store.read_station_draft("101"))

    def test_corrupt_record_is_absent(self):
        for storage in self.backends:
            with self.subTest(storage=type(storage).__name__):
                storage.set(station_draft_key("9"), "{not json")
                store = DraftStore(storage)
                self.assertIsNone(store.read(station_draft_key("9")))
                self.assertIsNone(store.read_station_draft("9"))

                storage.set(station_draft_key("9"), "[1, 2]")
                self.assertIsNone(store.read_station_draft("9"))

    def test_undecodable_file_is_absent(self):
        storage = JsonFileStorage(self.tmp.name)
        storage._path(station_draft_key("101")).write_bytes(b'{"stationId": "101", "\xff\xfe')
        store = DraftStore(storage)
        self.assertIsNone(store.read_station_draft("101"))

        # A fresh draft can be written over it
        draft = create_station_draft(PollingStation(id="101"), CANDIDATES)
        store.write_draft(draft)
        self.assertEqual(store.read_station_draft("101"), draft)

    def test_legacy_single_slot_key(self):
        storage = MemoryStorage()
        store = DraftStore(storage)
        legacy = create_constituency_draft(Constituency(id=7), CANDIDATES)
        store.write("draft:form34B", legacy)

        self.assertEqual(store.read_constituency_draft(7).constituency_id, 7)
        self.assertIsNone(store.read_constituency_draft(8))

    def test_file_storage_survives_reopen(self):
        storage = JsonFileStorage(self.tmp.name)
        DraftStore(storage).write_draft(create_station_draft(PollingStation(id="a/b"), CANDIDATES))

        reopened = DraftStore(JsonFileStorage(self.tmp.name))
        self.assertEqual(reopened.read_station_draft("a/b").station_id, "a/b")
        self.assertEqual([p.name for p in Path(self.tmp.name).glob(".tmp-*")], [])

    def test_delete_missing_is_noop(self):
        for storage in self.backends:
            storage.delete("nothing-here")


class TestSubmissionGuard(unittest.TestCase):
    """Tests for the per-entity submission flag."""

    def test_mark_and_check(self):
        storage = MemoryStorage()
        guard = SubmissionGuard(storage)
        self.assertFalse(guard.is_submitted(FormType.FORM_34A, "101"))
        guard.mark_submitted(FormType.FORM_34A, "101")
        self.assertTrue(guard.is_submitted(FormType.FORM_34A, "101"))
        self.assertFalse(guard.is_submitted(FormType.FORM_34B, "101"))
        self.assertEqual(storage.get("results_submitted_101"), "1")

    def test_guard_independent_of_draft(self):
        storage = MemoryStorage()
        guard = SubmissionGuard(storage)
        store = DraftStore(storage)
        store.write_draft(create_station_draft(PollingStation(id="101"), CANDIDATES))
        guard.mark_submitted(FormType.FORM_34A, "101")

        store.clear_draft(FormType.FORM_34A, "101")
        self.assertTrue(guard.is_submitted(FormType.FORM_34A, "101"))

    def test_only_one_means_submitted(self):
        storage = MemoryStorage()
        storage.set("results_submitted_5", "0")
        self.assertFalse(SubmissionGuard(storage).is_submitted(FormType.FORM_34A, "5"))

    def test_unreadable_guard_counts_as_submitted(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = JsonFileStorage(tmp)
            storage._path(guard_key(FormType.FORM_34A, "101")).write_bytes(b"\xff")
            guard = SubmissionGuard(storage)
            self.assertTrue(guard.is_submitted(FormType.FORM_34A, "101"))
            self.assertFalse(guard.is_submitted(FormType.FORM_34B, "101"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
