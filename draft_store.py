#!/usr/bin/env python3
"""
Persisted drafts and per-entity submission guards.

Storage is a narrow string key/value interface (get/set/delete) so the
medium can be swapped without touching reconciliation logic:

- MemoryStorage: process-local dict (tests, embedding)
- JsonFileStorage: one file per key in a directory, atomically replaced

DraftStore keeps one JSON draft per station (34A) or constituency (34B).
SubmissionGuard keeps the "already submitted on this device" flag, stored
apart from draft content so clearing or corrupting a draft can never
re-enable a duplicate submission.

Usage:
    from draft_store import DraftStore, SubmissionGuard, JsonFileStorage

    storage = JsonFileStorage(".results_drafts")
    store = DraftStore(storage)
    store.write(station_draft_key("101"), draft)
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Union
from urllib.parse import quote

from logging_config import get_logger
from result_types import (
    ConstituencyResultDraft,
    FormType,
    ResultDraft,
    StationResultDraft,
    draft_class_for,
)

logger = get_logger(__name__)

DRAFT_KEY_PREFIX = {
    FormType.FORM_34A: "draft:form34A:",
    FormType.FORM_34B: "draft:form34B:",
}

# Single-slot keys written by older clients; read only as a fallback
LEGACY_DRAFT_KEYS = {
    FormType.FORM_34A: "draft:form34A",
    FormType.FORM_34B: "draft:form34B",
}

GUARD_KEY_PREFIX = {
    FormType.FORM_34A: "results_submitted_",
    FormType.FORM_34B: "results_submitted_34b_",
}

GUARD_SET = "1"


def draft_key(form_type: FormType, entity_id) -> str:
    """Storage key of the draft for a station (34A) or constituency (34B)."""
    return f"{DRAFT_KEY_PREFIX[form_type]}{entity_id}"


def station_draft_key(station_id) -> str:
    return draft_key(FormType.FORM_34A, station_id)


def constituency_draft_key(constituency_id) -> str:
    return draft_key(FormType.FORM_34B, constituency_id)


def guard_key(form_type: FormType, entity_id) -> str:
    return f"{GUARD_KEY_PREFIX[form_type]}{entity_id}"


class KeyValueStorage(Protocol):
    """Minimal persisted string map."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStorage:
    """In-process storage; survives nothing but the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """
    Directory-backed storage, one file per key.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash never leaves a half-written value.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=self.SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


class DraftStore:
    """Read/write/clear drafts as JSON records."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def write(self, key: str, draft: ResultDraft) -> None:
        self.storage.set(key, json.dumps(draft.to_dict(), ensure_ascii=False))
        logger.debug(f"Draft written: {key}")

    def read(self, key: str) -> Optional[dict]:
        """
        Raw persisted record for a key.

        A record that fails to decode or parse, or is not a JSON object, is
        treated as absent.
        """
        try:
            raw = self.storage.get(key)
            if not raw:
                return None
            record = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding unreadable draft {key}: {e}")
            return None
        if not isinstance(record, dict):
            logger.warning(f"Discarding draft {key}: expected an object, got {type(record).__name__}")
            return None
        return record

    def clear(self, key: str) -> None:
        self.storage.delete(key)
        logger.debug(f"Draft cleared: {key}")

    def _read_typed(self, form_type: FormType, entity_id, cls, id_field: str):
        record = self.read(draft_key(form_type, entity_id))
        if record is None:
            record = self.read(LEGACY_DRAFT_KEYS[form_type])
            if record is None or str(record.get(id_field)) != str(entity_id):
                return None
            logger.info(f"Using legacy {form_type.value} draft for {form_type.entity_label} {entity_id}")
        return cls.from_dict(record)

    def read_station_draft(self, station_id) -> Optional[StationResultDraft]:
        return self.read_draft(FormType.FORM_34A, station_id)

    def read_constituency_draft(self, constituency_id) -> Optional[ConstituencyResultDraft]:
        return self.read_draft(FormType.FORM_34B, constituency_id)

    def read_draft(self, form_type: FormType, entity_id) -> Optional[ResultDraft]:
        id_field = "stationId" if form_type is FormType.FORM_34A else "constituencyId"
        return self._read_typed(form_type, entity_id, draft_class_for(form_type), id_field)

    def write_draft(self, draft: ResultDraft) -> None:
        self.write(draft_key(draft.form_type, draft.entity_id), draft)

    def clear_draft(self, form_type: FormType, entity_id) -> None:
        self.clear(draft_key(form_type, entity_id))


class SubmissionGuard:
    """Per-entity "already submitted on this device" flag."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def is_submitted(self, form_type: FormType, entity_id) -> bool:
        """An unreadable guard counts as submitted."""
        key = guard_key(form_type, entity_id)
        try:
            return self.storage.get(key) == GUARD_SET
        except UnicodeDecodeError as e:
            logger.warning(f"Unreadable submission guard {key}, treating as submitted: {e}")
            return True

    def mark_submitted(self, form_type: FormType, entity_id) -> None:
        self.storage.set(guard_key(form_type, entity_id), GUARD_SET)
        logger.info(f"Submission guard set for {form_type.value} {form_type.entity_label} {entity_id}")
