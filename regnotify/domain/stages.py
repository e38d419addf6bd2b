"""Registration stage catalog and transition rules.

Stage metadata lives in one explicit table. Lookups for unknown keys raise
instead of falling back to a guessed label.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Union

from .models import RegistrationStage


class InvalidStageTransition(ValueError):
    """Raised when a registration is moved to a stage it cannot reach."""

    def __init__(self, current: RegistrationStage, requested: RegistrationStage):
        self.current = current
        self.requested = requested
        allowed = ", ".join(s.value for s in sorted_stages(VALID_TRANSITIONS[current])) or "none"
        super().__init__(
            f"Cannot move registration from '{current.value}' to '{requested.value}' "
            f"(allowed: {allowed})"
        )


@dataclass(frozen=True)
class StageInfo:
    key: RegistrationStage
    label: str
    description: str
    ordinal: int

    @property
    def is_forward(self) -> bool:
        """True for the six ordered stages, False for the rejected branch."""
        return self.ordinal > 0


STAGES: Dict[RegistrationStage, StageInfo] = {
    RegistrationStage.SALE_COMPLETE: StageInfo(
        RegistrationStage.SALE_COMPLETE,
        "Sale Complete",
        "Vehicle sold, plates assigned from dealer inventory.",
        1,
    ),
    RegistrationStage.DOCUMENTS_COLLECTED: StageInfo(
        RegistrationStage.DOCUMENTS_COLLECTED,
        "Documents Collected",
        "All paperwork received (title, 130-U, insurance, inspection).",
        2,
    ),
    RegistrationStage.SUBMITTED_TO_DMV: StageInfo(
        RegistrationStage.SUBMITTED_TO_DMV,
        "Submitted to DMV",
        "Packet uploaded to webDEALER.",
        3,
    ),
    RegistrationStage.DMV_PROCESSING: StageInfo(
        RegistrationStage.DMV_PROCESSING,
        "DMV Processing",
        "Awaiting DMV review.",
        4,
    ),
    RegistrationStage.STICKER_READY: StageInfo(
        RegistrationStage.STICKER_READY,
        "Sticker Ready",
        "Registration approved, sticker available for pickup/delivery.",
        5,
    ),
    RegistrationStage.STICKER_DELIVERED: StageInfo(
        RegistrationStage.STICKER_DELIVERED,
        "Sticker Delivered",
        "Customer received their sticker.",
        6,
    ),
    RegistrationStage.REJECTED: StageInfo(
        RegistrationStage.REJECTED,
        "Rejected",
        "DMV rejected submission. Review notes and resubmit.",
        0,
    ),
}

VALID_TRANSITIONS: Dict[RegistrationStage, FrozenSet[RegistrationStage]] = {
    RegistrationStage.SALE_COMPLETE: frozenset({RegistrationStage.DOCUMENTS_COLLECTED}),
    RegistrationStage.DOCUMENTS_COLLECTED: frozenset({RegistrationStage.SUBMITTED_TO_DMV}),
    RegistrationStage.SUBMITTED_TO_DMV: frozenset({RegistrationStage.DMV_PROCESSING}),
    RegistrationStage.DMV_PROCESSING: frozenset(
        {RegistrationStage.STICKER_READY, RegistrationStage.REJECTED}
    ),
    RegistrationStage.STICKER_READY: frozenset({RegistrationStage.STICKER_DELIVERED}),
    RegistrationStage.STICKER_DELIVERED: frozenset(),
    RegistrationStage.REJECTED: frozenset({RegistrationStage.SUBMITTED_TO_DMV}),
}


def stage_info(stage: Union[RegistrationStage, str]) -> StageInfo:
    """Look up stage metadata.

    Raises:
        ValueError: If the key is not a known stage
    """
    return STAGES[RegistrationStage(stage)]


def forward_stages() -> List[StageInfo]:
    """The six ordered stages, first to last (used for progress bars)."""
    return sorted((info for info in STAGES.values() if info.is_forward), key=lambda s: s.ordinal)


def sorted_stages(stages) -> List[RegistrationStage]:
    return sorted(stages, key=lambda s: STAGES[s].ordinal)


def can_transition(current: Union[RegistrationStage, str], requested: Union[RegistrationStage, str]) -> bool:
    return RegistrationStage(requested) in VALID_TRANSITIONS[RegistrationStage(current)]


def validate_transition(current: Union[RegistrationStage, str], requested: Union[RegistrationStage, str]) -> None:
    """Raise InvalidStageTransition unless ``current -> requested`` is allowed."""
    current_stage = RegistrationStage(current)
    requested_stage = RegistrationStage(requested)
    if requested_stage not in VALID_TRANSITIONS[current_stage]:
        raise InvalidStageTransition(current_stage, requested_stage)
