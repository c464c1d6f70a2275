from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple, Union


@dataclass(frozen=True)
class ExactOverride:
    """Pin explicit raw ids (e.g. internal code names) to a public family."""

    mapping: Dict[str, str]

    def apply(self, model_id: str) -> Optional[str]:
        return self.mapping.get(model_id)

    @property
    def families(self) -> FrozenSet[str]:
        return frozenset(self.mapping.values())


@dataclass(frozen=True)
class ExactSetMember:
    """Collapse tier variants that draw from one shared quota pool."""

    family: str
    members: FrozenSet[str]

    def apply(self, model_id: str) -> Optional[str]:
        return self.family if model_id in self.members else None

    @property
    def families(self) -> FrozenSet[str]:
        return frozenset({self.family})


@dataclass(frozen=True)
class PrefixStrip:
    """Fallback: drop one leading vendor prefix, keep variant suffixes."""

    prefixes: Tuple[str, ...]

    def apply(self, model_id: str) -> str:
        for prefix in self.prefixes:
            if model_id.startswith(prefix):
                return model_id[len(prefix):]
        return model_id

    @property
    def families(self) -> FrozenSet[str]:
        return frozenset()


NormalizationRule = Union[ExactOverride, ExactSetMember, PrefixStrip]


# Evaluated top to bottom, first match wins. The exact-match rules must stay
# ahead of PrefixStrip, which matches everything.
NORMALIZATION_RULES: Tuple[NormalizationRule, ...] = (
    ExactOverride(
        {
            "rev19-uic3-1p": "gemini-2.5-computer-use-preview-10-2025",
            "gemini-2.5-computer-use-preview-10-2025": "gemini-2.5-computer-use-preview-10-2025",
        }
    ),
    ExactSetMember(
        "gemini-3-pro",
        frozenset({"gemini-3-pro", "gemini-3-pro-high", "gemini-3-pro-low", "gemini-3-pro-preview"}),
    ),
    ExactSetMember(
        "gemini-3-flash",
        frozenset({"gemini-3-flash", "gemini-3-flash-preview"}),
    ),
    PrefixStrip(("gemini-", "claude-", "gpt-", "qwen-")),
)

# Families produced by the exact-match rules always display under their own
# key, never under whichever raw id happened to be seen first.
SHARED_POOL_LABELS: Dict[str, str] = {
    family: family for rule in NORMALIZATION_RULES for family in sorted(rule.families)
}


def normalize_model_name(model_id: str) -> str:
    """Return the canonical family key for a provider model id.

    Pure and total: unknown ids fall through to prefix stripping, which
    returns the id unchanged when no known prefix matches.
    """
    model_id = model_id or ""
    for rule in NORMALIZATION_RULES:
        family = rule.apply(model_id)
        if family is not None:
            return family
    return model_id


def display_name_for(family: str, first_seen_model_id: str) -> str:
    return SHARED_POOL_LABELS.get(family, first_seen_model_id)


NORMALIZATION_EXAMPLES = {
    # Legacy code name -> public model
    "rev19-uic3-1p": "gemini-2.5-computer-use-preview-10-2025",
    # Gemini 3 Pro tiers share one pool
    "gemini-3-pro-high": "gemini-3-pro",
    "gemini-3-pro-low": "gemini-3-pro",
    "gemini-3-pro-preview": "gemini-3-pro",
    "gemini-3-flash-preview": "gemini-3-flash",
    # Prefix stripping keeps variant suffixes apart
    "gemini-2.5-flash": "2.5-flash",
    "gemini-2.5-flash-lite": "2.5-flash-lite",
    "claude-sonnet-4-5-thinking": "sonnet-4-5-thinking",
    "gpt-oss-120b-medium": "oss-120b-medium",
    # Unknown ids pass through
    "rev20-unknown": "rev20-unknown",
}
