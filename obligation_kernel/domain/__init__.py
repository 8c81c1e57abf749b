"""
Pure domain layer.

Enums, DTOs, share splitting and the injectable clock.  Nothing here
touches a session or the network.
"""

from obligation_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from obligation_kernel.domain.dtos import (
    AppliedSide,
    CycleReport,
    DistributionResult,
    DistributionStatus,
    ObligationView,
    PaymentResult,
    PaymentView,
    RunView,
    UnresolvedBranch,
)
from obligation_kernel.domain.obligation import (
    ACTIVE_RUN_STATUSES,
    VALID_TRANSITIONS,
    ObligationKind,
    ObligationStatus,
    OverpayPolicy,
    PaymentType,
    RunStatus,
    check_transition,
)
from obligation_kernel.domain.shares import (
    ChildShare,
    SiblingSplit,
    sibling_share_factor,
    split_among_siblings,
)

__all__ = [
    "ACTIVE_RUN_STATUSES",
    "AppliedSide",
    "ChildShare",
    "Clock",
    "CycleReport",
    "DeterministicClock",
    "DistributionResult",
    "DistributionStatus",
    "ObligationKind",
    "ObligationStatus",
    "ObligationView",
    "OverpayPolicy",
    "PaymentResult",
    "PaymentType",
    "PaymentView",
    "RunStatus",
    "RunView",
    "SiblingSplit",
    "SystemClock",
    "UnresolvedBranch",
    "VALID_TRANSITIONS",
    "check_transition",
    "sibling_share_factor",
    "split_among_siblings",
]
