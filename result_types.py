#!/usr/bin/env python3
"""
Data types for Form 34A/34B results capture.

Contains: FormType enum, Candidate, PollingStation, Constituency and
ResultEntry dataclasses, the two draft variants (StationResultDraft for 34A,
ConstituencyResultDraft for 34B) and the count coercion helper shared by
every numeric field.

Drafts are persisted as JSON objects with camelCase keys. ``from_dict``
ignores unknown keys and defaults missing ones. Legacy key names written by
older clients (``rejected``, ``registeredVotersSum``) are still read.
"""

import copy
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional, Union

CandidateId = Union[int, str]


class FormType(Enum):
    """Results form types."""
    FORM_34A = "34A"  # Polling station results
    FORM_34B = "34B"  # Constituency tally of 34A forms

    @property
    def entity_label(self) -> str:
        """Name of the entity a form of this type is keyed by."""
        return "station" if self is FormType.FORM_34A else "constituency"

    @classmethod
    def parse(cls, value: str) -> "FormType":
        """Accept "34A", "34a", "form34A" and the enum value itself."""
        if isinstance(value, FormType):
            return value
        text = str(value).strip().upper()
        if text.startswith("FORM"):
            text = text[4:]
        for form_type in cls:
            if form_type.value == text:
                return form_type
        raise ValueError(f"Unknown form type: {value!r}")


def coerce_count(value) -> int:
    """
    Coerce untrusted input to a non-negative whole number.

    Strings are parsed as numbers, fractions are floored and negative,
    non-numeric or non-finite input becomes 0.

    Examples: "12" -> 12, "7.9" -> 7, "-7" -> 0, "abc" -> 0, None -> 0
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            value = float(text)
        except ValueError:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, math.floor(number))


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def _number(d: dict, *keys: str, default=0):
    # Numbers are kept as stored so validation can still see bad values;
    # strings are coerced, anything else falls back to the default.
    for key in keys:
        if key not in d or d[key] is None:
            continue
        value = d[key]
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            return coerce_count(value)
        return default
    return default


def _optional_number(d: dict, key: str) -> Optional[int]:
    if d.get(key) is None:
        return None
    return _number(d, key, default=None)


def _text(d: dict, key: str) -> str:
    value = d.get(key)
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class Candidate:
    """Candidate reference data, owned by the candidate source."""
    id: CandidateId
    name: str
    party: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "Candidate":
        return cls(
            id=d.get("id", d.get("candidate_id", "")),
            name=str(d.get("name") or d.get("candidate_name") or ""),
            party=str(d.get("party") or ""),
        )


@dataclass
class PollingStation:
    """Polling station context used to seed a 34A draft."""
    id: CandidateId
    name: str = ""
    ward: str = ""
    constituency: str = ""
    county: str = ""
    registered_voters: Optional[int] = None

    @classmethod
    def from_dict(cls, d: dict) -> "PollingStation":
        registered = _optional_number(d, "registeredVoters")
        if registered is None:
            registered = _optional_number(d, "registered_voters")
        return cls(
            id=d.get("id", ""),
            name=_text(d, "name"),
            ward=_text(d, "ward"),
            constituency=_text(d, "constituency"),
            county=_text(d, "county"),
            registered_voters=registered,
        )


@dataclass
class Constituency:
    """Constituency context used to seed a 34B draft."""
    id: CandidateId
    name: str = ""
    county_name: str = ""
    county_code: str = ""
    registered_voters: Optional[int] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Constituency":
        return cls(
            id=d.get("id", ""),
            name=_text(d, "name"),
            county_name=_text(d, "county_name") or _text(d, "countyName"),
            county_code=_text(d, "county_code") or _text(d, "countyCode"),
            registered_voters=_optional_number(d, "registered_voters"),
        )


@dataclass
class ResultEntry:
    """Votes recorded for one candidate."""
    candidate_id: CandidateId
    votes: int = 0

    def to_dict(self) -> dict:
        return {"candidateId": self.candidate_id, "votes": self.votes}

    @classmethod
    def from_dict(cls, d: dict) -> "ResultEntry":
        return cls(
            candidate_id=d.get("candidateId", d.get("candidate_id", "")),
            votes=_number(d, "votes"),
        )


def _entries_from(raw) -> list[ResultEntry]:
    if not isinstance(raw, list):
        return []
    return [ResultEntry.from_dict(e) for e in raw if isinstance(e, dict)]


@dataclass
class ResultDraft:
    """
    Fields shared by both draft variants.

    ``total_valid`` and ``total_votes`` are cached derived values: they are
    recomputed after every mutation and transmitted as displayed.
    """
    form_type: ClassVar[FormType]

    entries: list[ResultEntry] = field(default_factory=list)
    rejected_votes: int = 0
    total_valid: int = 0
    total_votes: int = 0
    registered_voters: Optional[int] = None
    remarks: str = ""
    submitted: bool = False
    updated_at: str = field(default_factory=now_iso)
    last_saved_at: Optional[int] = None
    backend_id: Optional[CandidateId] = None

    @property
    def entity_id(self) -> str:
        raise NotImplementedError

    @property
    def candidate_ids(self) -> list[CandidateId]:
        return [e.candidate_id for e in self.entries]

    def copy(self):
        """Deep copy, so edits never alias a previous draft's entries."""
        return copy.deepcopy(self)

    def touch(self) -> None:
        self.updated_at = now_iso()

    def _base_dict(self) -> dict:
        return {
            "formType": self.form_type.value,
            "entries": [e.to_dict() for e in self.entries],
            "rejectedVotes": self.rejected_votes,
            "totalValid": self.total_valid,
            "totalVotes": self.total_votes,
            "registeredVoters": self.registered_voters,
            "remarks": self.remarks,
            "submitted": self.submitted,
            "updatedAt": self.updated_at,
            "lastSavedAt": self.last_saved_at,
        }

    @staticmethod
    def _base_kwargs(d: dict) -> dict:
        return {
            "entries": _entries_from(d.get("entries")),
            # "rejected" is the key older clients wrote
            "rejected_votes": _number(d, "rejectedVotes", "rejected"),
            "total_valid": _number(d, "totalValid"),
            "total_votes": _number(d, "totalVotes"),
            "remarks": _text(d, "remarks"),
            "submitted": d.get("submitted") is True,
            "updated_at": _text(d, "updatedAt") or now_iso(),
            "last_saved_at": _optional_number(d, "lastSavedAt"),
        }


@dataclass
class StationResultDraft(ResultDraft):
    """Form 34A: one polling station's results."""
    form_type: ClassVar[FormType] = FormType.FORM_34A

    station_id: CandidateId = ""

    # Context snapshot, for display and audit only
    station_name: str = ""
    ward: str = ""
    constituency: str = ""
    county: str = ""

    disputed_votes: int = 0
    spoilt_votes: int = 0

    presiding_officer: str = ""
    form34a_ref: str = ""
    polling_date: str = ""  # "YYYY-MM-DD"
    opening_time: str = ""  # "HH:MM"
    closing_time: str = ""  # "HH:MM"
    agents_signed: str = ""
    agents_refused: str = ""
    refusal_reasons: str = ""

    @property
    def entity_id(self) -> str:
        return str(self.station_id)

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update({
            "stationId": self.station_id,
            "stationName": self.station_name,
            "ward": self.ward,
            "constituency": self.constituency,
            "county": self.county,
            "disputedVotes": self.disputed_votes,
            "spoiltVotes": self.spoilt_votes,
            "presidingOfficer": self.presiding_officer,
            "form34ARef": self.form34a_ref,
            "pollingDate": self.polling_date,
            "openingTime": self.opening_time,
            "closingTime": self.closing_time,
            "agentsSigned": self.agents_signed,
            "agentsRefused": self.agents_refused,
            "refusalReasons": self.refusal_reasons,
            "backendId": self.backend_id,
        })
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "StationResultDraft":
        """Rebuild a draft from its persisted JSON form."""
        kwargs = cls._base_kwargs(d)
        # Older drafts stored "disputed" as a boolean flag; it carries no count.
        return cls(
            **kwargs,
            registered_voters=_optional_number(d, "registeredVoters"),
            backend_id=d.get("backendId"),
            station_id=d.get("stationId", ""),
            station_name=_text(d, "stationName"),
            ward=_text(d, "ward"),
            constituency=_text(d, "constituency"),
            county=_text(d, "county"),
            disputed_votes=_number(d, "disputedVotes"),
            spoilt_votes=_number(d, "spoiltVotes"),
            presiding_officer=_text(d, "presidingOfficer"),
            form34a_ref=_text(d, "form34ARef"),
            polling_date=_text(d, "pollingDate"),
            opening_time=_text(d, "openingTime"),
            closing_time=_text(d, "closingTime"),
            agents_signed=_text(d, "agentsSigned"),
            agents_refused=_text(d, "agentsRefused"),
            refusal_reasons=_text(d, "refusalReasons"),
        )


@dataclass
class ConstituencyResultDraft(ResultDraft):
    """Form 34B: constituency-level aggregate of 34A results."""
    form_type: ClassVar[FormType] = FormType.FORM_34B

    constituency_id: CandidateId = ""
    county_code: str = ""
    constituency_name: str = ""
    county_name: str = ""

    returning_officer: str = ""
    form34b_ref: str = ""
    stations_expected: Optional[int] = None
    stations_reported: Optional[int] = None

    @property
    def entity_id(self) -> str:
        return str(self.constituency_id)

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update({
            "constituencyId": self.constituency_id,
            "countyCode": self.county_code,
            "constituencyName": self.constituency_name,
            "countyName": self.county_name,
            "returningOfficer": self.returning_officer,
            "form34BRef": self.form34b_ref,
            "stationsExpected": self.stations_expected,
            "stationsReported": self.stations_reported,
            "form34bId": self.backend_id,
        })
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ConstituencyResultDraft":
        """Rebuild a draft from its persisted JSON form."""
        kwargs = cls._base_kwargs(d)
        registered = _optional_number(d, "registeredVoters")
        if registered is None:
            registered = _optional_number(d, "registeredVotersSum")
        return cls(
            **kwargs,
            registered_voters=registered,
            backend_id=d.get("form34bId", d.get("backendId")),
            constituency_id=d.get("constituencyId", ""),
            county_code=_text(d, "countyCode"),
            constituency_name=_text(d, "constituencyName"),
            county_name=_text(d, "countyName"),
            returning_officer=_text(d, "returningOfficer"),
            form34b_ref=_text(d, "form34BRef"),
            stations_expected=_optional_number(d, "stationsExpected"),
            stations_reported=_optional_number(d, "stationsReported"),
        )


def draft_class_for(form_type: FormType) -> type:
    """Draft variant for a form type."""
    if form_type is FormType.FORM_34A:
        return StationResultDraft
    return ConstituencyResultDraft


def draft_from_dict(d: dict) -> ResultDraft:
    """Rebuild either variant, using the persisted "formType" tag."""
    if d.get("formType") == FormType.FORM_34B.value or (
        "constituencyId" in d and "stationId" not in d
    ):
        return ConstituencyResultDraft.from_dict(d)
    return StationResultDraft.from_dict(d)
