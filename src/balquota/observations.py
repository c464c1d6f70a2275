from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class QuotaObservation:
    """One model's remaining quota as reported by one provider account."""

    provider: str
    model_id: str
    remaining_fraction: float


@dataclass(frozen=True)
class NormalizedObservation:
    observation: QuotaObservation
    family: str

    @property
    def model_id(self) -> str:
        return self.observation.model_id

    @property
    def remaining_fraction(self) -> float:
        return self.observation.remaining_fraction


@dataclass
class FamilyGroup:
    """All observations that share one canonical family key."""

    family: str
    display_name: str
    members: List[NormalizedObservation] = field(default_factory=list)

    @property
    def average_fraction(self) -> float:
        # Plain sum/len so a single member comes back unchanged.
        return sum(m.remaining_fraction for m in self.members) / len(self.members)
