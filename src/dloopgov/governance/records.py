"""
dloopgov/governance/records.py

Normalization of raw getProposal results into Proposal objects.

Two deployments of the AssetDAO contract return proposals in different
field orders, and some RPC stacks hand back named structs instead of
tuples. Raw results are therefore wrapped in a tagged record first:

    PositionalRecord  - a 12-word tuple, layout detected from the values
    NamedRecord       - a mapping, either naming scheme accepted

Positional layouts:

    ASSET_FIRST     [id, kind, asset, amount, description, proposer,
                     createdAt, votingEnds, yes, no, state, executed]
    PROPOSER_FIRST  [id, kind, proposer, amount, description, asset,
                     votesFor, votesAgainst, startTime, endTime, state, executed]
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from .models import (
    Proposal,
    ProposalKind,
    ProposalState,
    ZERO_ADDRESS,
    parse_decimal,
)

logger = logging.getLogger("dloopgov.governance.records")


# ============================================================================
# CONSTANTS
# ============================================================================

WEI_DECIMALS = 18
RECORD_LENGTH = 12

# Unix seconds between 2001 and 5138
MIN_TIMESTAMP = 1_000_000_000
MAX_TIMESTAMP = 100_000_000_000
MS_THRESHOLD = 1_000_000_000_000

ONE_YEAR = 365 * 24 * 60 * 60

# First index searched for a stand-in end time
TIMESTAMP_SEARCH_START = 6

# Named-record aliases, first hit wins
NAMED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "proposalId"),
    "kind": ("proposalType", "kind", "type"),
    "asset": ("assetAddress", "asset", "token"),
    "proposer": ("proposer", "creator"),
    "amount": ("amount",),
    "description": ("description",),
    "votes_for": ("votesFor", "yesVotes", "forVotes"),
    "votes_against": ("votesAgainst", "noVotes", "againstVotes"),
    "start_time": ("startTime", "createdAt"),
    "end_time": ("endTime", "votingEnds"),
    "state": ("state", "status"),
    "executed": ("executed",),
    "cancelled": ("cancelled", "canceled"),
}


# ============================================================================
# RAW RECORDS
# ============================================================================

class RecordLayout(Enum):
    """Field order of a positional record."""
    ASSET_FIRST = "asset_first"
    PROPOSER_FIRST = "proposer_first"


# index of each field per layout
LAYOUT_INDEXES: Dict[RecordLayout, Dict[str, int]] = {
    RecordLayout.ASSET_FIRST: {
        "id": 0, "kind": 1, "asset": 2, "amount": 3, "description": 4,
        "proposer": 5, "start_time": 6, "end_time": 7, "votes_for": 8,
        "votes_against": 9, "state": 10, "executed": 11,
    },
    RecordLayout.PROPOSER_FIRST: {
        "id": 0, "kind": 1, "proposer": 2, "amount": 3, "description": 4,
        "asset": 5, "votes_for": 6, "votes_against": 7, "start_time": 8,
        "end_time": 9, "state": 10, "executed": 11,
    },
}


@dataclass(frozen=True)
class PositionalRecord:
    """getProposal result as an ordered tuple."""
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class NamedRecord:
    """getProposal result as a struct with named members."""
    fields: Dict[str, Any]


RawRecord = Union[PositionalRecord, NamedRecord]


def wrap_raw(data: Any) -> RawRecord:
    """
    Tag a raw contract result.

    Raises:
        ValueError: if the result is neither a mapping nor a sequence
    """
    if isinstance(data, (PositionalRecord, NamedRecord)):
        return data
    if isinstance(data, Mapping):
        return NamedRecord(dict(data))
    if isinstance(data, (list, tuple)):
        return PositionalRecord(tuple(data))
    raise ValueError(f"Unsupported proposal record type: {type(data).__name__}")


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = parse_decimal(value)
    if number is None:
        return None
    return int(number)


def to_seconds(value: Any) -> int:
    """Timestamp in seconds; millisecond values are scaled down, junk is 0."""
    number = _as_int(value)
    if number is None or number <= 0:
        return 0
    if number >= MS_THRESHOLD:
        number //= 1000
    return number


def is_plausible_timestamp(value: Any) -> bool:
    seconds = to_seconds(value)
    return MIN_TIMESTAMP <= seconds < MAX_TIMESTAMP


def to_decimal_string(value: Any, decimals: int = WEI_DECIMALS) -> str:
    """
    Human-unit decimal string.

    Integers are treated as base units (wei) and scaled down; strings and
    decimals are taken as already human-scaled.
    """
    if value is None:
        return "0"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        number = Decimal(value).scaleb(-decimals)
    else:
        number = parse_decimal(value)
        if number is None:
            return str(value).strip()
    if number == 0:
        return "0"
    return format(number.normalize(), "f")


def detect_layout(values: Sequence[Any]) -> RecordLayout:
    """
    Pick the layout whose time slots hold plausible timestamps.

    ASSET_FIRST wins ties; it is the layout of the current deployment.
    """
    asset_first = sum(is_plausible_timestamp(values[i]) for i in (6, 7))
    proposer_first = sum(is_plausible_timestamp(values[i]) for i in (8, 9))
    if proposer_first > asset_first:
        return RecordLayout.PROPOSER_FIRST
    return RecordLayout.ASSET_FIRST


def find_future_timestamp(values: Sequence[Any], now: float) -> int:
    """First plausible timestamp within the next year, searching from index 6."""
    horizon = now + ONE_YEAR
    for value in values[TIMESTAMP_SEARCH_START:]:
        if isinstance(value, bool):
            continue
        seconds = to_seconds(value)
        if seconds and MIN_TIMESTAMP <= seconds and now < seconds < horizon:
            return seconds
    return 0


def _kind(code: Any, proposal_id: str) -> ProposalKind:
    if isinstance(code, ProposalKind):
        return code
    if isinstance(code, str) and not code.strip().isdigit():
        try:
            return ProposalKind(code.strip().lower())
        except ValueError:
            pass
    kind = ProposalKind.from_code(_as_int(code) if code is not None else -1)
    if kind is None:
        logger.warning(f"Proposal {proposal_id}: unknown proposal type {code!r}, treating as invest")
        return ProposalKind.INVEST
    return kind


def _state(code: Any, proposal_id: str) -> ProposalState:
    if isinstance(code, ProposalState):
        return code
    if isinstance(code, str) and not code.strip().isdigit():
        try:
            return ProposalState(code.strip().lower())
        except ValueError:
            pass
    state = ProposalState.from_code(_as_int(code) if code is not None else -1)
    if state is None:
        logger.warning(f"Proposal {proposal_id}: unknown state {code!r}, treating as pending")
        return ProposalState.PENDING
    return state


def _address(value: Any) -> str:
    if not value:
        return ZERO_ADDRESS
    return str(value)


# ============================================================================
# NORMALIZATION
# ============================================================================

def _positional_fields(record: PositionalRecord) -> Tuple[Dict[str, Any], RecordLayout]:
    values = record.values
    if len(values) < RECORD_LENGTH:
        raise ValueError(f"Proposal record has {len(values)} fields, expected {RECORD_LENGTH}")
    layout = detect_layout(values)
    fields = {name: values[i] for name, i in LAYOUT_INDEXES[layout].items()}
    fields["cancelled"] = False
    return fields, layout


def _named_fields(record: NamedRecord) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name, aliases in NAMED_FIELDS.items():
        for alias in aliases:
            if alias in record.fields and record.fields[alias] is not None:
                fields[name] = record.fields[alias]
                break
    return fields


def normalize_record(
    raw: RawRecord,
    proposal_id: Any,
    now: float,
    decimals: int = WEI_DECIMALS,
) -> Proposal:
    """
    Turn a raw record into a Proposal.

    Args:
        raw: Raw contract result or tagged record
        proposal_id: Id the record was fetched with
        now: Current unix time, used to repair missing end times
        decimals: Token decimals for integer amounts and tallies

    Returns:
        Normalized Proposal

    Raises:
        ValueError: if the record is structurally unusable
    """
    pid = str(proposal_id)
    raw = wrap_raw(raw)

    if isinstance(raw, PositionalRecord):
        fields, layout = _positional_fields(raw)
        search_space: Sequence[Any] = raw.values
    else:
        fields = _named_fields(raw)
        layout = None
        search_space = ()

    start_time = to_seconds(fields.get("start_time"))
    end_time = to_seconds(fields.get("end_time"))
    if not MIN_TIMESTAMP <= end_time < MAX_TIMESTAMP:
        repaired = find_future_timestamp(search_space, now)
        if repaired:
            logger.debug(f"Proposal {pid}: end time {fields.get('end_time')!r} replaced by {repaired}")
        end_time = repaired
    if start_time and end_time and end_time < start_time:
        raise ValueError(f"Proposal {pid}: end time {end_time} before start time {start_time}")

    state = _state(fields.get("state"), pid)
    executed = bool(fields.get("executed", False))
    if executed and state is ProposalState.ACTIVE:
        state = ProposalState.EXECUTED
    cancelled = bool(fields.get("cancelled", False))
    if cancelled and state is ProposalState.ACTIVE:
        state = ProposalState.CANCELLED

    description = str(fields.get("description") or "").strip() or f"Proposal {pid}"

    proposal = Proposal(
        id=pid,
        proposer=_address(fields.get("proposer")),
        kind=_kind(fields.get("kind"), pid),
        target_asset=_address(fields.get("asset")),
        amount=to_decimal_string(fields.get("amount"), decimals),
        description=description,
        votes_for=to_decimal_string(fields.get("votes_for"), decimals),
        votes_against=to_decimal_string(fields.get("votes_against"), decimals),
        start_time=start_time,
        end_time=end_time,
        state=state,
        executed=executed,
        cancelled=cancelled,
    )
    if layout is not None:
        logger.debug(f"Proposal {pid} decoded with {layout.value} layout")
    return proposal
