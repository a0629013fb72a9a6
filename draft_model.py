#!/usr/bin/env python3
"""
Draft creation, edits and totals for Form 34A/34B drafts.

Every edit returns a new draft with totals recomputed and ``updated_at``
refreshed; the input draft is never modified. Numeric input is untrusted
and is coerced with ``coerce_count`` (floor, clamp to >= 0).

Usage:
    from draft_model import create_station_draft, set_vote

    draft = create_station_draft(station, candidates)
    draft = set_vote(draft, 0, "120")
"""

from typing import Optional, TypeVar

from result_types import (
    Candidate,
    Constituency,
    ConstituencyResultDraft,
    PollingStation,
    ResultDraft,
    ResultEntry,
    StationResultDraft,
    coerce_count,
)

D = TypeVar("D", bound=ResultDraft)

# Numeric fields editable with set_count(), per draft variant
STATION_COUNT_FIELDS = ("rejected_votes", "disputed_votes", "spoilt_votes", "registered_voters")
CONSTITUENCY_COUNT_FIELDS = ("rejected_votes", "registered_voters", "stations_expected", "stations_reported")

STATION_TEXT_FIELDS = (
    "presiding_officer", "form34a_ref", "remarks",
    "polling_date", "opening_time", "closing_time",
    "agents_signed", "agents_refused", "refusal_reasons",
)
CONSTITUENCY_TEXT_FIELDS = ("returning_officer", "form34b_ref", "remarks")


def count_fields(draft: ResultDraft) -> tuple:
    if isinstance(draft, StationResultDraft):
        return STATION_COUNT_FIELDS
    return CONSTITUENCY_COUNT_FIELDS


def text_fields(draft: ResultDraft) -> tuple:
    if isinstance(draft, StationResultDraft):
        return STATION_TEXT_FIELDS
    return CONSTITUENCY_TEXT_FIELDS


def _zero_entries(candidates: list[Candidate]) -> list[ResultEntry]:
    return [ResultEntry(candidate_id=c.id, votes=0) for c in candidates]


def create_station_draft(station: PollingStation, candidates: list[Candidate]) -> StationResultDraft:
    """Fresh 34A draft: one zero-vote entry per candidate, in list order."""
    return StationResultDraft(
        station_id=station.id,
        station_name=station.name,
        ward=station.ward,
        constituency=station.constituency,
        county=station.county,
        registered_voters=station.registered_voters,
        entries=_zero_entries(candidates),
    )


def create_constituency_draft(
    constituency: Constituency,
    candidates: list[Candidate],
    county_code: str = "",
) -> ConstituencyResultDraft:
    """Fresh 34B draft: one zero-vote entry per candidate, in list order."""
    return ConstituencyResultDraft(
        constituency_id=constituency.id,
        constituency_name=constituency.name,
        county_name=constituency.county_name,
        county_code=county_code or constituency.county_code,
        registered_voters=constituency.registered_voters,
        entries=_zero_entries(candidates),
    )


def sum_valid(draft: ResultDraft) -> int:
    """Sum of candidate votes; non-numeric stored values count as 0."""
    total = 0
    for entry in draft.entries:
        votes = entry.votes
        if isinstance(votes, (int, float)) and not isinstance(votes, bool):
            total += votes
    return int(total)


def expected_totals(draft: ResultDraft) -> tuple[int, int]:
    """(total_valid, total_votes) as they should be cached on the draft."""
    valid = sum_valid(draft)
    rejected = draft.rejected_votes if isinstance(draft.rejected_votes, int) else coerce_count(draft.rejected_votes)
    return valid, valid + rejected


def recompute_totals(draft: D) -> D:
    """Write derived totals back into the draft (in place) and return it."""
    draft.total_valid, draft.total_votes = expected_totals(draft)
    return draft


def turnout(draft: ResultDraft) -> float:
    """
    Turnout percentage: total votes / registered voters * 100.

    Returns 0.0 when registered voters is unknown or zero.
    """
    registered = draft.registered_voters or 0
    if registered <= 0:
        return 0.0
    _, total = expected_totals(draft)
    return total / registered * 100


def set_vote(draft: D, candidate_index: int, raw_value) -> D:
    """
    Set one candidate's votes from untrusted input.

    Raises:
        IndexError: candidate_index is outside the draft's entries
    """
    if candidate_index < 0 or candidate_index >= len(draft.entries):
        raise IndexError(f"No candidate at index {candidate_index}")

    updated = draft.copy()
    updated.entries[candidate_index].votes = coerce_count(raw_value)
    recompute_totals(updated)
    updated.touch()
    return updated


def set_count(draft: D, field_name: str, raw_value) -> D:
    """
    Set an auxiliary count (rejected, disputed, spoilt, registered voters...).

    Raises:
        ValueError: field_name is not a count field of this draft variant
    """
    if field_name not in count_fields(draft):
        raise ValueError(f"{field_name!r} is not an editable count on form {draft.form_type.value}")

    updated = draft.copy()
    setattr(updated, field_name, coerce_count(raw_value))
    recompute_totals(updated)
    updated.touch()
    return updated


def set_text(draft: D, field_name: str, value: Optional[str]) -> D:
    """Set a narrative field verbatim (None clears it)."""
    if field_name not in text_fields(draft):
        raise ValueError(f"{field_name!r} is not a text field on form {draft.form_type.value}")

    updated = draft.copy()
    setattr(updated, field_name, "" if value is None else str(value))
    updated.touch()
    return updated


def coerce_draft(draft: D) -> D:
    """
    Make a draft syntactically well-formed: every count coerced, totals
    recomputed. This is all a local save requires.
    """
    updated = draft.copy()
    for entry in updated.entries:
        entry.votes = coerce_count(entry.votes)
    for name in count_fields(updated):
        value = getattr(updated, name)
        if value is None and name != "rejected_votes":
            continue
        setattr(updated, name, coerce_count(value))
    recompute_totals(updated)
    return updated


def entries_match_candidates(draft: ResultDraft, candidates: list[Candidate]) -> bool:
    """True if the draft's entries mirror the candidate list, in order."""
    return [str(cid) for cid in draft.candidate_ids] == [str(c.id) for c in candidates]
