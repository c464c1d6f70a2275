import json

import pytest

from balquota.compute import (
    FRACTION_EPSILON,
    aggregate,
    balance_document,
    balanced_map,
    calculate_balanced_quotas,
    filter_redundant,
    normalize_observations,
)
from balquota.observations import QuotaObservation


def _obs(model_id: str, fraction: float, provider: str = "antigravity") -> QuotaObservation:
    return QuotaObservation(provider, model_id, fraction)


def _antigravity(quota: dict, status: str = "success") -> dict:
    return {
        "provider": "antigravity",
        "authIndex": "0",
        "label": "a@example.com",
        "status": status,
        "quota": {k: {"remainingFraction": v} for k, v in quota.items()},
        "timestamp": "2026-01-01T00:00:00+00:00",
    }


def _gemini_cli(buckets: dict) -> dict:
    return {
        "provider": "gemini-cli",
        "authIndex": "1",
        "label": "b@example.com",
        "status": "success",
        "quota": {"buckets": [{"modelId": k, "remainingFraction": v} for k, v in buckets.items()]},
        "timestamp": "2026-01-01T00:00:00+00:00",
    }


def test_thinking_variant_with_same_quota_is_dropped():
    out = filter_redundant([_obs("foo", 0.5), _obs("foo-thinking", 0.5)])
    assert [o.model_id for o in out] == ["foo"]


def test_thinking_variant_with_different_quota_survives():
    out = filter_redundant([_obs("foo", 0.5), _obs("foo-thinking", 0.3)])
    assert [o.model_id for o in out] == ["foo", "foo-thinking"]


def test_thinking_variant_within_tolerance_is_dropped():
    out = filter_redundant([_obs("foo-thinking", 0.5 + FRACTION_EPSILON / 10), _obs("foo", 0.5)])
    assert [o.model_id for o in out] == ["foo"]


def test_thinking_variant_without_base_is_kept_and_order_preserved():
    observations = [_obs("b", 0.1), _obs("solo-thinking", 0.2), _obs("a", 0.3)]
    assert filter_redundant(observations) == observations


def test_thinking_filter_never_looks_across_provider_payloads():
    # The gemini-cli base lives in another payload, so the antigravity
    # thinking variant stays and is averaged as its own family.
    results = [_antigravity({"gemini-foo-thinking": 0.5}), _gemini_cli({"gemini-foo": 0.5})]
    assert calculate_balanced_quotas(results) == {"gemini-foo-thinking": 0.5, "gemini-foo": 0.5}


def test_thinking_filter_runs_per_account_of_the_same_provider():
    results = [
        _antigravity({"foo": 0.5, "foo-thinking": 0.5}),
        _antigravity({"foo": 0.3, "foo-thinking": 0.3}),
    ]
    assert calculate_balanced_quotas(results) == {"foo": pytest.approx(0.4)}


def test_thinking_variant_is_kept_when_base_lives_in_another_account():
    results = [_antigravity({"foo": 0.5}), _antigravity({"foo-thinking": 0.5})]
    assert calculate_balanced_quotas(results) == {"foo": 0.5, "foo-thinking": 0.5}


def test_aggregate_averages_members_of_one_family():
    groups = aggregate(normalize_observations([_obs("gemini-bar", 0.4), _obs("bar", 0.6, "gemini-cli")]))

    assert list(groups) == ["bar"]
    group = groups["bar"]
    assert len(group.members) == 2
    assert group.average_fraction == pytest.approx(0.5)
    assert group.display_name == "gemini-bar"


def test_single_member_family_keeps_value_unchanged():
    groups = aggregate(normalize_observations([_obs("gemini-2.5-flash", 0.123456789)]))
    assert groups["2.5-flash"].average_fraction == 0.123456789


def test_shared_pool_families_display_under_canonical_label():
    groups = aggregate(
        normalize_observations(
            [_obs("gemini-3-pro-low", 0.2), _obs("gemini-3-pro-high", 0.4), _obs("rev19-uic3-1p", 1.0)]
        )
    )
    assert balanced_map(groups) == {
        "gemini-3-pro": pytest.approx(0.3),
        "gemini-2.5-computer-use-preview-10-2025": 1.0,
    }


def test_cross_provider_averaging_end_to_end():
    results = [
        _antigravity({"gemini-3-pro-high": 0.2, "gemini-2.5-flash": 1.0, "gemini-2.5-flash-thinking": 1.0}),
        _gemini_cli({"gemini-3-pro-preview": 0.4, "gemini-2.5-flash": 0.5}),
    ]

    assert calculate_balanced_quotas(results) == {
        "gemini-3-pro": pytest.approx(0.3),
        "gemini-2.5-flash": pytest.approx(0.75),
    }


def test_failed_and_empty_results_contribute_nothing():
    results = [
        _antigravity({"gemini-2.5-flash": 0.1}, status="error"),
        {"provider": "gemini-cli", "status": "success", "quota": None},
        {"provider": "codex", "status": "success", "quota": {"plan_type": "plus"}},
        "garbage",
        _gemini_cli({"gemini-2.5-flash": 0.9}),
    ]
    assert calculate_balanced_quotas(results) == {"gemini-2.5-flash": 0.9}


def test_empty_input_yields_empty_map():
    assert calculate_balanced_quotas([]) == {}
    assert balance_document({"timestamp": "t", "baseUrl": "u", "results": []}) == {}
    assert balance_document({}) == {}
    assert balance_document(None) == {}
    assert balance_document({"results": "nope"}) == {}


def test_outputs_stay_within_unit_interval():
    results = [
        _antigravity({"gemini-3-pro-high": 0.0, "claude-a": 1.0, "gpt-oss-120b-medium": 0.37}),
        _gemini_cli({"gemini-3-pro": 1.0, "gemini-2.5-pro": 0.0}),
    ]
    for value in calculate_balanced_quotas(results).values():
        assert 0.0 <= value <= 1.0


def test_pipeline_is_idempotent_byte_for_byte():
    document = {
        "timestamp": "2026-01-01T00:00:00+00:00",
        "baseUrl": "http://127.0.0.1:8317/v0/management",
        "results": [
            _antigravity({"claude-sonnet-4-5": 0.6, "claude-sonnet-4-5-thinking": 0.6, "gemini-3-pro-low": 0.1}),
            _gemini_cli({"gemini-3-pro-preview": 0.3, "gemini-2.5-flash": 0.8}),
        ],
    }
    first = json.dumps(balance_document(document), indent=2)
    second = json.dumps(balance_document(json.loads(json.dumps(document))), indent=2)
    assert first == second
