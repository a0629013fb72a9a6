#!/usr/bin/env python3
"""
Draft validation before submission.

Contains: ValidationCode, ValidationIssue, validate, format_validation_issue.

Rules run in a fixed order and the first failure wins, so the operator is
always shown the most basic problem first.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from draft_model import expected_totals
from result_types import Candidate, CandidateId, ResultDraft, StationResultDraft


class ValidationCode(Enum):
    """Reasons a draft may not be submitted."""
    INVALID_VOTE_COUNT = "invalid_vote_count"
    INVALID_CANDIDATE_REFERENCE = "invalid_candidate_reference"
    DUPLICATE_CANDIDATE = "duplicate_candidate"
    CANDIDATE_LIST_MISMATCH = "candidate_list_mismatch"
    INVALID_AUXILIARY_COUNT = "invalid_auxiliary_count"
    TURNOUT_EXCEEDS_REGISTRATION = "turnout_exceeds_registration"
    TOTALS_MISMATCH = "totals_mismatch"


@dataclass(frozen=True)
class ValidationIssue:
    """First failing rule for a draft."""
    code: ValidationCode
    message: str
    field: str = ""

    def __str__(self) -> str:
        return self.message


def is_count(value) -> bool:
    """Non-negative whole number (bools and floats are rejected)."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def candidate_id_number(candidate_id: CandidateId) -> Optional[int]:
    """Positive integer id, or None if the id is empty, malformed or <= 0."""
    if isinstance(candidate_id, bool):
        return None
    if isinstance(candidate_id, int):
        return candidate_id if candidate_id > 0 else None
    if isinstance(candidate_id, str):
        text = candidate_id.strip()
        if text.isdigit():
            number = int(text)
            return number if number > 0 else None
    return None


def _auxiliary_counts(draft: ResultDraft) -> list[tuple[str, str]]:
    fields = [("rejected_votes", "Rejected votes")]
    if isinstance(draft, StationResultDraft):
        fields += [("disputed_votes", "Disputed votes"), ("spoilt_votes", "Spoilt ballots")]
    return fields


def validate(draft: ResultDraft, candidates: Optional[list[Candidate]] = None) -> Optional[ValidationIssue]:
    """
    Check a draft's internal numeric consistency.

    Args:
        draft: Station (34A) or constituency (34B) draft
        candidates: Optional canonical candidate list; when given, entry ids
            must mirror it exactly and in order

    Returns:
        The first ValidationIssue found, or None if the draft may be submitted
    """
    for index, entry in enumerate(draft.entries):
        if not is_count(entry.votes):
            return ValidationIssue(
                ValidationCode.INVALID_VOTE_COUNT,
                "Votes must be non-negative whole numbers.",
                f"entries[{index}].votes",
            )

    for index, entry in enumerate(draft.entries):
        if candidate_id_number(entry.candidate_id) is None:
            return ValidationIssue(
                ValidationCode.INVALID_CANDIDATE_REFERENCE,
                "Candidate IDs are invalid. Please refresh.",
                f"entries[{index}].candidate_id",
            )

    seen: set[int] = set()
    for index, entry in enumerate(draft.entries):
        number = candidate_id_number(entry.candidate_id)
        if number in seen:
            return ValidationIssue(
                ValidationCode.DUPLICATE_CANDIDATE,
                f"Candidate {entry.candidate_id} appears more than once.",
                f"entries[{index}].candidate_id",
            )
        seen.add(number)

    if candidates is not None:
        expected = [candidate_id_number(c.id) for c in candidates]
        actual = [candidate_id_number(e.candidate_id) for e in draft.entries]
        if expected != actual:
            return ValidationIssue(
                ValidationCode.CANDIDATE_LIST_MISMATCH,
                "Duplicate or missing candidate IDs in submission.",
                "entries",
            )

    for name, label in _auxiliary_counts(draft):
        if not is_count(getattr(draft, name)):
            return ValidationIssue(
                ValidationCode.INVALID_AUXILIARY_COUNT,
                f"{label} must be a non-negative whole number.",
                name,
            )

    valid, total = expected_totals(draft)
    registered = draft.registered_voters or 0
    if registered > 0 and total > registered:
        return ValidationIssue(
            ValidationCode.TURNOUT_EXCEEDS_REGISTRATION,
            f"Total votes ({total}) cannot exceed registered voters ({registered}).",
            "registered_voters",
        )

    if draft.total_valid != valid or draft.total_votes != total:
        return ValidationIssue(
            ValidationCode.TOTALS_MISMATCH,
            f"Recorded totals ({draft.total_valid} valid, {draft.total_votes} total) do not match "
            f"the candidate votes ({valid} valid, {total} total). Please review.",
            "total_valid",
        )

    return None


def format_validation_issue(issue: Optional[ValidationIssue]) -> str:
    """One-line operator message for a validation result."""
    if issue is None:
        return "OK - ready to submit"
    location = f" [{issue.field}]" if issue.field else ""
    return f"{issue.code.value}{location}: {issue.message}"
