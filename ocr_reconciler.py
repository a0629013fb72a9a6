#!/usr/bin/env python3
"""
Merge OCR output into a results draft.

An OCR pass is an authoritative re-read of the paper form, not a patch:
every canonical candidate gets the OCR count for its normalised name, or 0
if the OCR engine did not report it. Narrative fields are only ever filled
in, never blanked, and OCR notes are appended to the remarks so each pass
leaves an audit trail. The merged draft is never submitted automatically.
"""

from typing import Optional, TypeVar

from draft_model import expected_totals
from name_normalizer import normalize_candidate_name
from logging_config import get_logger
from ocr_client import OcrResponse
from result_types import (
    Candidate,
    ConstituencyResultDraft,
    ResultDraft,
    ResultEntry,
    StationResultDraft,
    coerce_count,
)

logger = get_logger(__name__)

D = TypeVar("D", bound=ResultDraft)

REMARKS_SEPARATOR = " | "


def ocr_votes_by_name(ocr: OcrResponse) -> dict[str, int]:
    """Normalised candidate name -> votes. Later rows win; unnamed rows are skipped."""
    by_name: dict[str, int] = {}
    for row in ocr.entries:
        key = normalize_candidate_name(row.candidate_name)
        if not key:
            continue
        by_name[key] = coerce_count(row.votes)
    return by_name


def _positive(value: Optional[int]) -> Optional[int]:
    return value if value is not None and value > 0 else None


def append_remarks(existing: str, notes: str) -> str:
    """Join prior remarks and new OCR notes, skipping empty parts."""
    parts = [p for p in ((existing or "").strip(), (notes or "").strip()) if p]
    return REMARKS_SEPARATOR.join(parts)


def merge_ocr(draft: D, ocr: OcrResponse, candidates: list[Candidate]) -> D:
    """
    Apply an OCR response to a draft.

    Args:
        draft: Station (34A) or constituency (34B) draft; not modified
        ocr: Parsed OCR response
        candidates: Canonical candidate list; the merged draft has exactly
            one entry per candidate, in this order

    Returns:
        New draft with OCR values merged and ``updated_at`` refreshed
    """
    by_name = ocr_votes_by_name(ocr)
    merged = draft.copy()

    matched = 0
    entries = []
    for candidate in candidates:
        key = normalize_candidate_name(candidate.name)
        if key and key in by_name:
            matched += 1
            votes = by_name[key]
        else:
            votes = 0
        entries.append(ResultEntry(candidate_id=candidate.id, votes=votes))
    merged.entries = entries

    if ocr.rejected_votes is not None:
        merged.rejected_votes = coerce_count(ocr.rejected_votes)

    valid_from_entries, _ = expected_totals(merged)
    merged.total_valid = _positive(ocr.total_valid) or valid_from_entries
    merged.total_votes = _positive(ocr.total_votes) or merged.total_valid + coerce_count(merged.rejected_votes)
    merged.registered_voters = _positive(ocr.registered_voters) or draft.registered_voters

    if isinstance(merged, StationResultDraft):
        merged.presiding_officer = ocr.officer or merged.presiding_officer
        merged.form34a_ref = ocr.form_serial or merged.form34a_ref
    elif isinstance(merged, ConstituencyResultDraft):
        merged.returning_officer = ocr.officer or merged.returning_officer
        merged.form34b_ref = ocr.form_serial or merged.form34b_ref
        merged.stations_expected = _positive(ocr.stations_expected) or merged.stations_expected
        merged.stations_reported = _positive(ocr.stations_reported) or merged.stations_reported

    merged.remarks = append_remarks(merged.remarks, ocr.notes)
    merged.touch()

    unmatched = len(candidates) - matched
    if unmatched:
        logger.warning(
            f"OCR {draft.form_type.value} {draft.entity_id}: {unmatched} of {len(candidates)} "
            f"candidates not found in OCR output; set to 0 for review"
        )
    else:
        logger.info(f"OCR {draft.form_type.value} {draft.entity_id}: all {len(candidates)} candidates matched")
    return merged


def unmatched_ocr_names(ocr: OcrResponse, candidates: list[Candidate]) -> list[str]:
    """OCR rows whose names match no canonical candidate, for operator review."""
    known = {normalize_candidate_name(c.name) for c in candidates}
    return [
        row.candidate_name
        for row in ocr.entries
        if normalize_candidate_name(row.candidate_name) not in known
    ]
