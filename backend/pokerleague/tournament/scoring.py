"""Finishing position -> season points lookup."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping


@dataclass(frozen=True)
class ScoringTable:
    """Externally configured points per finishing position."""

    rules: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for position in self.rules:
            if not isinstance(position, int) or position <= 0:
                raise ValueError(f"Position must be a positive integer: {position!r}")

    @classmethod
    def from_rules(cls, rules: Iterable[tuple[int, int]]) -> "ScoringTable":
        return cls(rules=dict(rules))

    def points_for(self, position: int | None) -> int:
        """Return season points for a finishing position (unknown -> 0)."""
        if position is None:
            return 0
        if position <= 0:
            raise ValueError("Position must be a positive integer.")
        return self.rules.get(position, 0)

    def with_rule(self, position: int, points: int) -> "ScoringTable":
        """Return a new table with one rule added or replaced."""
        updated = dict(self.rules)
        updated[position] = points
        return ScoringTable(rules=updated)

    def to_list(self) -> list[dict[str, int]]:
        return [
            {"position": position, "points": points}
            for position, points in sorted(self.rules.items())
        ]
