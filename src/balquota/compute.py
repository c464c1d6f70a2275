from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .model_normalization import display_name_for, normalize_model_name
from .observations import FamilyGroup, NormalizedObservation, QuotaObservation
from .sources.extractors import extract

logger = logging.getLogger(__name__)


# ============================================================
# BALANCING CONFIGURATION
# ============================================================
# Every fraction comparison goes through fractions_equal().
FRACTION_EPSILON = 1e-9

THINKING_SUFFIX = "-thinking"

CLAUDE_FAMILY_PREFIXES = ("claude-", "gemini-claude-")
GPT_OSS_FAMILY_PREFIXES = ("gpt-oss-120b",)
CLAUDE_MERGED_KEY = "gemini-claude-models"
VERTEX_MERGED_KEY = "vertex-ai"
# ============================================================


def fractions_equal(a: float, b: float) -> bool:
    return abs(a - b) < FRACTION_EPSILON


def filter_redundant(observations: Sequence[QuotaObservation]) -> List[QuotaObservation]:
    """Drop ``-thinking`` variants that just mirror their base model's pool.

    Must be called on one provider payload at a time: the lookup is keyed by
    model id only.
    """
    by_model = {o.model_id: o.remaining_fraction for o in observations}

    out: List[QuotaObservation] = []
    for o in observations:
        if o.model_id.endswith(THINKING_SUFFIX):
            base_id = o.model_id[: -len(THINKING_SUFFIX)]
            base = by_model.get(base_id)
            if base is not None and fractions_equal(base, o.remaining_fraction):
                logger.debug("Dropping %s (%s): same quota as %s", o.model_id, o.provider, base_id)
                continue
        out.append(o)
    return out


def normalize_observations(observations: Iterable[QuotaObservation]) -> List[NormalizedObservation]:
    return [NormalizedObservation(o, normalize_model_name(o.model_id)) for o in observations]


def aggregate(observations: Iterable[NormalizedObservation]) -> Dict[str, FamilyGroup]:
    """Group observations from every provider by canonical family."""
    groups: Dict[str, FamilyGroup] = {}
    for o in observations:
        group = groups.get(o.family)
        if group is None:
            group = groups[o.family] = FamilyGroup(
                family=o.family,
                display_name=display_name_for(o.family, o.model_id),
            )
        group.members.append(o)
    return groups


def balanced_map(groups: Dict[str, FamilyGroup]) -> Dict[str, float]:
    return {g.display_name: g.average_fraction for g in groups.values() if g.members}


def _consistent_value(balanced: Dict[str, float], keys: List[str]) -> Optional[float]:
    """Shared value of ``keys`` if there is at least one and every pair agrees."""
    if not keys:
        return None
    values = [balanced[k] for k in keys]
    if fractions_equal(max(values), min(values)):
        return values[0]
    return None


def post_group(balanced: Dict[str, float]) -> Dict[str, float]:
    """Fold claude / gpt-oss families that clearly share one backend pool.

    Claude models (both ``claude-`` and ``gemini-claude-`` spellings) that all
    report the same value collapse into ``gemini-claude-models``. When the
    gpt-oss-120b models also agree with that value, both sets collapse into
    a single ``vertex-ai`` entry instead.
    """
    out = dict(balanced)

    claude_keys = [k for k in out if k.startswith(CLAUDE_FAMILY_PREFIXES)]
    gpt_keys = [k for k in out if k.startswith(GPT_OSS_FAMILY_PREFIXES)]
    claude_value = _consistent_value(out, claude_keys)
    gpt_value = _consistent_value(out, gpt_keys)

    if claude_value is None:
        return out

    if gpt_value is not None and fractions_equal(claude_value, gpt_value):
        for k in claude_keys + gpt_keys:
            del out[k]
        out[VERTEX_MERGED_KEY] = claude_value
        logger.debug("Merged %s into %s", claude_keys + gpt_keys, VERTEX_MERGED_KEY)
        return out

    for k in claude_keys:
        del out[k]
    out[CLAUDE_MERGED_KEY] = claude_value
    logger.debug("Merged %s into %s", claude_keys, CLAUDE_MERGED_KEY)
    return out


def _successful_results(results: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(results, list):
        return
    for result in results:
        if not isinstance(result, dict):
            continue
        if result.get("status") != "success" or not result.get("quota"):
            continue
        yield result


def calculate_balanced_quotas(results: Any) -> Dict[str, float]:
    """Balanced remaining fraction per model family across all accounts."""
    normalized: List[NormalizedObservation] = []
    for result in _successful_results(results):
        provider = str(result.get("provider") or "")
        observations = filter_redundant(extract(provider, result["quota"]))
        normalized.extend(normalize_observations(observations))

    groups = aggregate(normalized)
    logger.debug("Aggregated %d observations into %d families", len(normalized), len(groups))
    return post_group(balanced_map(groups))


def balance_document(document: Any) -> Dict[str, float]:
    """Balance a full quota document (``{"timestamp", "baseUrl", "results"}``)."""
    if not isinstance(document, dict):
        return {}
    return calculate_balanced_quotas(document.get("results"))
