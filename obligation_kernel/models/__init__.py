"""ORM models for the obligation kernel."""

from obligation_kernel.models.distribution import DistributionRun
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord
from obligation_kernel.models.person import (
    DEFAULT_EDGE_TYPE,
    Person,
    RelationshipEdge,
)

__all__ = [
    "DEFAULT_EDGE_TYPE",
    "DistributionRun",
    "ObligationRecord",
    "PaymentRecord",
    "Person",
    "RelationshipEdge",
]
