"""
Configuration schema (``obligation_config.schema``).

Responsibility
--------------
Defines ``EngineSettings``, the frozen dataclass every runtime component
receives instead of reading files or environment variables itself.

Invariants enforced
-------------------
* ``validate()`` rejects out-of-range values with a descriptive
  ``ValueError``; there are no silent clamps.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

OVERPAY_POLICIES = ("clamp", "allow", "reject")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineSettings:
    """Effective settings for one process."""

    database_url: str = "sqlite:///obligations.db"
    max_depth: int = 10
    step_budget: int | None = None
    decimal_places: int = 2
    share_factor_places: int = 18
    overpay_policy: str = "clamp"
    log_level: str = "INFO"
    echo_sql: bool = False

    def validate(self) -> EngineSettings:
        """
        Check every field.

        Returns:
            self, so calls can be chained.
        Raises:
            ValueError: on the first invalid field.
        """
        if not self.database_url:
            raise ValueError("database_url must be set")
        if not isinstance(self.max_depth, int) or self.max_depth < 1:
            raise ValueError(f"max_depth must be an integer >= 1, got {self.max_depth!r}")
        if self.step_budget is not None and (
            not isinstance(self.step_budget, int) or self.step_budget < 1
        ):
            raise ValueError(
                f"step_budget must be a positive integer or null, got {self.step_budget!r}"
            )
        if not isinstance(self.decimal_places, int) or not 0 <= self.decimal_places <= 9:
            raise ValueError(
                f"decimal_places must be between 0 and 9, got {self.decimal_places!r}"
            )
        if (
            not isinstance(self.share_factor_places, int)
            or not 1 <= self.share_factor_places <= 18
        ):
            raise ValueError(
                f"share_factor_places must be between 1 and 18, got {self.share_factor_places!r}"
            )
        if self.overpay_policy not in OVERPAY_POLICIES:
            raise ValueError(
                f"overpay_policy must be one of {OVERPAY_POLICIES}, got {self.overpay_policy!r}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        return self

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
