"""Stage classification tables for the workshop process.

Pure domain data with no external dependencies. Each stage name resolves
once to a StageDefinition describing how its intervals are reconstructed.
The closure and opener tables encode the physical workshop process and
must change only when that process changes.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any


class StageKind(str, Enum):
    """How a stage's Start events turn into intervals."""

    SYMMETRIC = "symmetric"  # closed by an End of the same stage
    IMPLICIT_CLOSED = "implicit_closed"  # closed by a downstream stage's Start
    PAUSED_TRACKING = "paused_tracking"  # Start/Pause/Resume/End per work type and bay
    TRANSITION_MARKER = "transition_marker"  # measured back to an upstream stage's Start


class NameMatch(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"


def name_matches(pattern: str, match: NameMatch, stage_name: str) -> bool:
    if match == NameMatch.PREFIX:
        return stage_name.startswith(pattern)
    return stage_name == pattern


@dataclass(frozen=True)
class ClosureRule:
    """The occurrence-th later Start of `stage` closes the interval."""

    stage: str
    match: NameMatch
    occurrence: int = 1


@dataclass(frozen=True)
class OpenerRule:
    """The latest earlier Start of `stage` opens the marker's interval."""

    stage: str
    match: NameMatch


@dataclass(frozen=True)
class StageDefinition:
    name: str
    kind: StageKind
    match: NameMatch = NameMatch.EXACT
    closure: ClosureRule | None = None
    opener: OpenerRule | None = None

    def matches(self, stage_name: str) -> bool:
        return name_matches(self.name, self.match, stage_name)


INTERACTIVE_BAY = "Interactive Bay"
JOB_CARD_CREATION = "Job Card Creation + Customer Approval"
BAY_ALLOCATION = "Job Card Received + Bay Allocation"
BAY_WORK = "Bay Work"
ADDITIONAL_WORK_APPROVAL = "Additional Work Job Approval"
PARTS_ESTIMATE = "Creation of Parts Estimate"
FINAL_INSPECTION = "Final Inspection"
READY_FOR_WASHING = "Ready for Washing"
WASHING = "Washing"
RECEIVED_BY_TECHNICIAN = "Job Card Received (by Technician)"
RECEIVED_BY_FI = "Job Card Received (by FI)"

# Canonical display order (the documented process sequence)
STAGE_ORDER: list[str] = [
    INTERACTIVE_BAY,
    JOB_CARD_CREATION,
    BAY_ALLOCATION,
    BAY_WORK,
    ADDITIONAL_WORK_APPROVAL,
    PARTS_ESTIMATE,
    FINAL_INSPECTION,
    READY_FOR_WASHING,
    WASHING,
]

# Stages reported by the special (implicitly closed) averages family
SPECIAL_STAGES: list[str] = [
    JOB_CARD_CREATION,
    ADDITIONAL_WORK_APPROVAL,
    READY_FOR_WASHING,
]

# Stages reported by the job card received family
JOB_CARD_RECEIVED_STAGES: list[str] = [
    BAY_ALLOCATION,
    RECEIVED_BY_TECHNICIAN,
    RECEIVED_BY_FI,
]

STAGE_DEFINITIONS: tuple[StageDefinition, ...] = (
    StageDefinition(INTERACTIVE_BAY, StageKind.SYMMETRIC),
    StageDefinition(
        JOB_CARD_CREATION,
        StageKind.IMPLICIT_CLOSED,
        closure=ClosureRule(BAY_ALLOCATION, NameMatch.PREFIX),
    ),
    StageDefinition(
        BAY_ALLOCATION,
        StageKind.IMPLICIT_CLOSED,
        match=NameMatch.PREFIX,
        closure=ClosureRule(BAY_WORK, NameMatch.PREFIX),
    ),
    StageDefinition(BAY_WORK, StageKind.PAUSED_TRACKING, match=NameMatch.PREFIX),
    # Additional work goes back through bay allocation; the approval only
    # counts as done once the vehicle has been allocated a bay twice.
    StageDefinition(
        ADDITIONAL_WORK_APPROVAL,
        StageKind.IMPLICIT_CLOSED,
        match=NameMatch.PREFIX,
        closure=ClosureRule(BAY_ALLOCATION, NameMatch.PREFIX, occurrence=2),
    ),
    StageDefinition(PARTS_ESTIMATE, StageKind.SYMMETRIC),
    StageDefinition(FINAL_INSPECTION, StageKind.SYMMETRIC),
    StageDefinition(
        READY_FOR_WASHING,
        StageKind.IMPLICIT_CLOSED,
        closure=ClosureRule(WASHING, NameMatch.EXACT),
    ),
    StageDefinition(WASHING, StageKind.SYMMETRIC),
    StageDefinition(
        RECEIVED_BY_TECHNICIAN,
        StageKind.TRANSITION_MARKER,
        opener=OpenerRule(BAY_ALLOCATION, NameMatch.PREFIX),
    ),
    StageDefinition(
        RECEIVED_BY_FI,
        StageKind.TRANSITION_MARKER,
        opener=OpenerRule(RECEIVED_BY_TECHNICIAN, NameMatch.EXACT),
    ),
)

KNOWN_STAGES: frozenset[str] = frozenset(d.name for d in STAGE_DEFINITIONS)

_EXACT = {d.name: d for d in STAGE_DEFINITIONS}
# Longest prefix wins
_PREFIXES = sorted(
    (d for d in STAGE_DEFINITIONS if d.match == NameMatch.PREFIX),
    key=lambda d: len(d.name),
    reverse=True,
)


@lru_cache(maxsize=1024)
def classify(stage_name: str) -> StageDefinition:
    """Resolve a raw stage name to its definition.

    Exact names win over prefixes ("Washing" is not "Ready for Washing");
    suffixed names such as "Bay Work: Denting" resolve by prefix. Names
    outside the process table are treated as symmetric stages of their own.
    """
    definition = _EXACT.get(stage_name)
    if definition is not None:
        return definition
    for candidate in _PREFIXES:
        if candidate.matches(stage_name):
            return candidate
    return StageDefinition(stage_name, StageKind.SYMMETRIC)


def order_by_stage(mapping: dict[str, Any]) -> dict[str, Any]:
    """Re-key a stage-keyed map in canonical process order.

    Unknown stage names follow the known ones in input order.
    """
    ordered = {name: mapping[name] for name in STAGE_ORDER if name in mapping}
    for name, value in mapping.items():
        if name not in ordered:
            ordered[name] = value
    return ordered
