from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from fulfillment import config
from fulfillment.errors import LicenseServiceError

logger = structlog.get_logger(__name__)


def _lookup(resp: Dict[str, Any], *keys):
    data = resp.get("data") if isinstance(resp.get("data"), dict) else {}
    for source in (resp, data):
        for key in keys:
            value = source.get(key)
            if value:
                return value
    return None


def pick_license_key(resp: Dict[str, Any]) -> str:
    return str(_lookup(resp, "license_key", "licenseKey") or "").strip()


def pick_expires_at(resp: Dict[str, Any]) -> Optional[datetime]:
    raw = _lookup(resp, "expires_at", "expiresAt")
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _explicit_flag(resp: Dict[str, Any]) -> Optional[bool]:
    for key in ("ok", "success"):
        if isinstance(resp.get(key), bool):
            return resp[key]
    return None


@dataclass
class LicenseGrant:
    license_key: str = ""
    expires_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class LicenseServiceClient:
    """Synchronous client for the third-party license API."""

    def __init__(self, base_url=None, token=None, timeout=None, transport=None):
        self.base_url = (base_url if base_url is not None else config.LICENSE_SERVICE_URL).rstrip("/")
        self.token = token if token is not None else config.LICENSE_SERVICE_TOKEN
        self.timeout = timeout or config.LICENSE_SERVICE_TIMEOUT
        self.transport = transport

    def _post(self, path: str, payload: dict) -> Dict[str, Any]:
        if not self.base_url:
            raise LicenseServiceError("License service URL is not configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        url = f"{self.base_url}{path}"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            logger.error("license_service_timeout", url=url, timeout=self.timeout)
            raise LicenseServiceError(f"License service timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "license_service_http_error",
                url=url,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise LicenseServiceError(
                f"License service error {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("license_service_unreachable", url=url, error=str(e))
            raise LicenseServiceError(f"License service unreachable: {e}") from e
        except ValueError as e:
            raise LicenseServiceError("License service returned invalid JSON") from e

        if not isinstance(body, dict):
            raise LicenseServiceError(f"Unexpected license service response: {body!r}")
        return body

    def issue(self, payload: dict) -> LicenseGrant:
        resp = self._post("/api/licenses/issue", payload)
        key = pick_license_key(resp)
        if _explicit_flag(resp) is False or not key:
            raise LicenseServiceError(f"License issue rejected: {resp}")
        return LicenseGrant(license_key=key, expires_at=pick_expires_at(resp), raw=resp)

    def renew(self, payload: dict) -> LicenseGrant:
        resp = self._post("/api/licenses/renew", payload)
        flag = _explicit_flag(resp)
        expires_at = pick_expires_at(resp)
        if flag is None:
            flag = bool(expires_at) or resp.get("renewed") is True
        if not flag:
            raise LicenseServiceError(f"License renew rejected: {resp}")
        return LicenseGrant(
            license_key=pick_license_key(resp) or payload.get("license_key", ""),
            expires_at=expires_at,
            raw=resp,
        )


_client = None


def get_license_client() -> LicenseServiceClient:
    global _client
    if _client is None:
        _client = LicenseServiceClient()
    return _client
