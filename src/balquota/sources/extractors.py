"""Per-provider quota payload adapters.

Each adapter turns an already-decoded provider quota payload (as stored in
the ``quota`` field of a successful fetch result) into a flat list of
:class:`QuotaObservation`. Adapters never raise: partial or malformed
payloads simply yield fewer observations.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..observations import QuotaObservation


MODEL_ID_KEYS: Sequence[str] = ("modelId", "model_name", "model")
FRACTION_KEYS: Sequence[str] = ("remainingFraction", "remaining_fraction", "fraction")


def _fraction(v: Any) -> Optional[float]:
    # bool is an int subclass; a JSON true/false is not a fraction.
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    v = float(v)
    return v if math.isfinite(v) else None


def _first_model_id(obj: Dict[str, Any]) -> Optional[str]:
    for key in MODEL_ID_KEYS:
        v = obj.get(key)
        if isinstance(v, str) and v:
            return v
    return None


def _first_fraction(obj: Dict[str, Any]) -> Optional[float]:
    for key in FRACTION_KEYS:
        v = _fraction(obj.get(key))
        if v is not None:
            return v
    return None


def extract_antigravity_quotas(quota: Any) -> List[QuotaObservation]:
    """Flat keyed-map shape: ``{modelId: {"remainingFraction": float, ...}}``."""
    if not isinstance(quota, dict):
        return []

    out: List[QuotaObservation] = []
    for model_id, model_data in quota.items():
        if not isinstance(model_id, str) or not isinstance(model_data, dict):
            continue
        fraction = _fraction(model_data.get("remainingFraction"))
        if fraction is None:
            continue
        out.append(QuotaObservation("antigravity", model_id, fraction))
    return out


def parse_gemini_cli_bucket(bucket: Any) -> Optional[QuotaObservation]:
    if not isinstance(bucket, dict):
        return None
    model_id = _first_model_id(bucket)
    fraction = _first_fraction(bucket)
    if model_id is None or fraction is None:
        return None
    return QuotaObservation("gemini-cli", model_id, fraction)


def extract_gemini_cli_quotas(quota: Any) -> List[QuotaObservation]:
    """Bucket-list shape: ``{"buckets": [{"modelId": ..., "remainingFraction": ...}]}``."""
    buckets = quota.get("buckets") if isinstance(quota, dict) else quota
    if not isinstance(buckets, list):
        return []

    out: List[QuotaObservation] = []
    for bucket in buckets:
        observation = parse_gemini_cli_bucket(bucket)
        if observation is not None:
            out.append(observation)
    return out


# codex usage payloads carry rate-limit windows, not per-model fractions,
# so they have no adapter and contribute nothing.
EXTRACTORS: Dict[str, Callable[[Any], List[QuotaObservation]]] = {
    "antigravity": extract_antigravity_quotas,
    "gemini-cli": extract_gemini_cli_quotas,
}


def extract(provider: str, quota: Any) -> List[QuotaObservation]:
    extractor = EXTRACTORS.get(provider)
    if extractor is None:
        return []
    return extractor(quota)
