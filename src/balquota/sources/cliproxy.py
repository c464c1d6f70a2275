"""CLIProxyAPI management API client and per-account quota fetcher.

The management API proxies upstream requests through stored credentials
(``POST /api-call``), substituting ``$TOKEN$`` in headers with the
account's access token. Quota endpoints and headers below mirror what the
CLIProxyAPI management center uses.
"""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "http://127.0.0.1:8317/v0/management"
DEFAULT_TIMEOUT_S = 30.0

ANTIGRAVITY_QUOTA_URLS = [
    "https://daily-cloudcode-pa.googleapis.com/v1internal:fetchAvailableModels",
    "https://daily-cloudcode-pa.sandbox.googleapis.com/v1internal:fetchAvailableModels",
    "https://cloudcode-pa.googleapis.com/v1internal:fetchAvailableModels",
]
ANTIGRAVITY_REQUEST_HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
    "User-Agent": "antigravity/1.11.5 windows/amd64",
}

GEMINI_CLI_QUOTA_URL = "https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota"
GEMINI_CLI_REQUEST_HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
}

CODEX_USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
CODEX_REQUEST_HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
    "User-Agent": "codex_cli_rs/0.76.0 (Debian 13.0.0; x86_64) WindowsTerminal",
}

# Fetch order; also the order observations reach the balancer.
PROVIDER_ORDER = ("antigravity", "gemini-cli", "codex")


class ManagementAPIError(RuntimeError):
    """The management API itself could not be reached or rejected a call."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CLIProxyAPIClient:
    def __init__(self, base_url: str, api_key: str, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s

    def request(self, method: str, path: str, body: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            text = e.read().decode("utf-8", errors="replace")
            raise ManagementAPIError(f"HTTP {e.code}: {text}")
        except urllib.error.URLError as e:
            raise ManagementAPIError(f"Failed to reach management API at {url}: {e.reason}")

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ManagementAPIError(f"Failed to parse management API response from {url}: {e}")

    def request_object(self, method: str, path: str, body: Any = None) -> Dict[str, Any]:
        result = self.request(method, path, body)
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise ManagementAPIError(f"Unexpected management API response from {path}: expected a JSON object")
        return result

    def api_call(self, req: Dict[str, Any]) -> Dict[str, Any]:
        result = self.request_object("POST", "/api-call", req)
        return {
            "statusCode": result.get("status_code"),
            "header": result.get("header"),
            "body": result.get("body"),
        }

    def get_auth_files(self) -> Dict[str, Any]:
        return self.request_object("GET", "/auth-files")


def _is_2xx(status: Any) -> bool:
    return isinstance(status, int) and 200 <= status < 300


def _decode_body(body: Any) -> Any:
    return json.loads(body) if isinstance(body, str) else body


def _label(file: Dict[str, Any]) -> str:
    return file.get("label") or file.get("email") or file.get("account") or file.get("id") or ""


class QuotaFetcher:
    def __init__(self, client: CLIProxyAPIClient):
        self.client = client

    def fetch_all_quotas(self) -> List[Dict[str, Any]]:
        files = self.client.get_auth_files().get("files")
        if not isinstance(files, list):
            files = []
        grouped = self.group_by_provider(files)

        fetchers = {
            "antigravity": self.fetch_antigravity_quota,
            "gemini-cli": self.fetch_gemini_cli_quota,
            "codex": self.fetch_codex_quota,
        }

        results: List[Dict[str, Any]] = []
        for provider in PROVIDER_ORDER:
            for file in grouped.get(provider, []):
                if file.get("disabled"):
                    continue
                result = fetchers[provider](file)
                if result["status"] != "success":
                    logger.warning("%s quota fetch failed for %s: %s", provider, result["label"], result["error"])
                results.append(result)
        return results

    @staticmethod
    def group_by_provider(files: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for file in files:
            if not isinstance(file, dict):
                continue
            grouped.setdefault(str(file.get("provider") or ""), []).append(file)
        return grouped

    @staticmethod
    def _result(provider: str, file: Dict[str, Any], quota: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "provider": provider,
            "authIndex": file.get("auth_index"),
            "label": _label(file),
            "status": "error" if error is not None else "success",
        }
        if error is not None:
            result["error"] = error
        else:
            result["quota"] = quota
        result["timestamp"] = _now_iso()
        return result

    def fetch_antigravity_quota(self, file: Dict[str, Any]) -> Dict[str, Any]:
        errors: List[str] = []

        # Endpoints are alternatives: the first one that answers wins.
        for url in ANTIGRAVITY_QUOTA_URLS:
            try:
                response = self.client.api_call(
                    {
                        "authIndex": file.get("auth_index"),
                        "method": "POST",
                        "url": url,
                        "header": dict(ANTIGRAVITY_REQUEST_HEADERS),
                        "data": "{}",
                    }
                )
                if not _is_2xx(response["statusCode"]):
                    errors.append(f"HTTP {response['statusCode']}")
                    continue
                body = _decode_body(response["body"])
            except (RuntimeError, ValueError) as e:
                errors.append(str(e))
                continue

            models = body.get("models") if isinstance(body, dict) else None
            return self._result("antigravity", file, quota=self.extract_antigravity_quota(models))

        return self._result("antigravity", file, error=", ".join(errors) or "Failed to fetch quota")

    @staticmethod
    def extract_antigravity_quota(models: Any) -> Dict[str, Any]:
        """Reduce ``fetchAvailableModels`` output to ``{modelId: {remainingFraction, ...}}``."""
        if not isinstance(models, dict):
            return {}

        quota: Dict[str, Any] = {}
        for model_id, model in models.items():
            if not isinstance(model, dict) or not isinstance(model.get("quotaInfo"), dict):
                continue
            info = model["quotaInfo"]
            quota[model_id] = {
                "displayName": model.get("displayName"),
                "remainingFraction": info.get("remainingFraction"),
                "resetTime": info.get("resetTime"),
            }
        return quota

    def fetch_gemini_cli_quota(self, file: Dict[str, Any]) -> Dict[str, Any]:
        project_id = self.extract_project_id(file)

        try:
            response = self.client.api_call(
                {
                    "authIndex": file.get("auth_index"),
                    "method": "POST",
                    "url": GEMINI_CLI_QUOTA_URL,
                    "header": dict(GEMINI_CLI_REQUEST_HEADERS),
                    "data": json.dumps({"project": project_id}),
                }
            )
            if not _is_2xx(response["statusCode"]):
                return self._result("gemini-cli", file, error=f"HTTP {response['statusCode']}")
            body = _decode_body(response["body"])
        except (RuntimeError, ValueError) as e:
            return self._result("gemini-cli", file, error=str(e))

        buckets = (body.get("buckets") if isinstance(body, dict) else None) or []
        return self._result("gemini-cli", file, quota={"buckets": buckets})

    @staticmethod
    def extract_project_id(file: Dict[str, Any]) -> str:
        email = file.get("email")
        match = re.search(r"\(([^)]+)\)", email) if isinstance(email, str) else None
        if match:
            return match.group(1)

        account = file.get("account")
        if isinstance(account, str) and "prefab-setting" in account:
            parts = account.split("-")
            if len(parts) >= 2:
                return "-".join(parts[1:])

        return "default-project"

    def fetch_codex_quota(self, file: Dict[str, Any]) -> Dict[str, Any]:
        account_id = self.extract_codex_account_id(file)
        if not account_id:
            return self._result("codex", file, error="Missing account ID")

        try:
            response = self.client.api_call(
                {
                    "authIndex": file.get("auth_index"),
                    "method": "GET",
                    "url": CODEX_USAGE_URL,
                    "header": {**CODEX_REQUEST_HEADERS, "Chatgpt-Account-Id": account_id},
                }
            )
            if not _is_2xx(response["statusCode"]):
                return self._result("codex", file, error=f"HTTP {response['statusCode']}")
            body = _decode_body(response["body"])
        except (RuntimeError, ValueError) as e:
            return self._result("codex", file, error=str(e))

        return self._result("codex", file, quota=body)

    @staticmethod
    def extract_codex_account_id(file: Dict[str, Any]) -> Optional[str]:
        attributes = file.get("attributes")
        if not isinstance(attributes, dict):
            return None
        for key in ("chatgpt_account_id", "account_id"):
            value = attributes.get(key)
            if isinstance(value, str) and value:
                return value
        return None


def build_quota_document(results: List[Dict[str, Any]], base_url: str) -> Dict[str, Any]:
    return {"timestamp": _now_iso(), "baseUrl": base_url, "results": results}


def fetch_quota_document(base_url: str, api_key: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> Dict[str, Any]:
    client = CLIProxyAPIClient(base_url, api_key, timeout_s)
    results = QuotaFetcher(client).fetch_all_quotas()
    return build_quota_document(results, base_url)
