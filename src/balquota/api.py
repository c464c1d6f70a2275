from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .compute import balance_document
from .sources.cliproxy import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_S, fetch_quota_document

app = FastAPI(title="balquota")


cors_allow_origins = [o.strip() for o in os.environ.get("BALQUOTA_ALLOW_ORIGINS", "").split(",") if o.strip()]
cors_allow_origin_regex = os.environ.get("BALQUOTA_ALLOW_ORIGIN_REGEX", "").strip() or None
if not cors_allow_origins and cors_allow_origin_regex is None:
    cors_allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_origin_regex=cors_allow_origin_regex,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


_cache: Dict[str, tuple[float, Any]] = {}
CACHE_TTL = int(os.environ.get("BALQUOTA_CACHE_TTL", "120"))  # seconds


def get_cached_or_fetch(key: str, fetch_fn) -> Any:
    now = datetime.now().timestamp()
    if key in _cache:
        cached_time, cached_data = _cache[key]
        if now - cached_time < CACHE_TTL:
            return cached_data
    data = fetch_fn()
    _cache[key] = (now, data)
    return data


def _live_quota_document() -> Dict[str, Any]:
    key = os.environ.get("BALQUOTA_MANAGEMENT_KEY", "")
    if not key:
        raise HTTPException(status_code=503, detail="BALQUOTA_MANAGEMENT_KEY is not configured")
    base_url = os.environ.get("BALQUOTA_BASE_URL", DEFAULT_BASE_URL)
    timeout_s = float(os.environ.get("BALQUOTA_TIMEOUT", str(DEFAULT_TIMEOUT_S)))
    try:
        return get_cached_or_fetch("quota", lambda: fetch_quota_document(base_url, key, timeout_s))
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/api/balance")
def post_balance(document: Dict[str, Any]) -> Dict[str, float]:
    """Balance a quota document produced by `balquota fetch`."""
    return balance_document(document)


@app.get("/api/quota")
def get_quota() -> Dict[str, Any]:
    return _live_quota_document()


@app.get("/api/balanced")
def get_balanced() -> Dict[str, float]:
    return balance_document(_live_quota_document())


@app.get("/health")
def health_check():
    return {"status": "ok"}
