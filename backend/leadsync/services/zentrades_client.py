import httpx
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import logging

from ..config import Settings
from ..schemas.pydantic_schemas import AuthToken, BookingPayload, BookingResult, Credentials

logger = logging.getLogger(__name__)


class BookingPlatformError(Exception):
    pass


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _company_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _timezone_name(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ZenTradesClient:
    """Client for the booking platform: login, company timezone and booking creation."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base_url = (settings.zt_api_base or "").rstrip("/")
        self.referer = settings.ob_app_url or ""
        self.timeout = settings.http_timeout
        self.default_company_id = settings.default_company_id
        self.timezone_offset_header = settings.zt_timezone_offset_header
        self._transport = transport

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "accept": "application/json, text/plain, */*",
            "content-type": "application/json",
            "referer": self.referer,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def login(self, credentials: Credentials) -> AuthToken:
        if not credentials.complete:
            raise BookingPlatformError("Login requires both username and password")
        if not self.base_url:
            raise BookingPlatformError("ZT_API_BASE is not configured")

        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        body = {"username": credentials.username, "password": credentials.password, "rememberMe": True}
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/api/auth/login",
                params={"timestamp": timestamp},
                headers=self._headers(),
                json=body,
            )
        if not response.is_success:
            raise BookingPlatformError(f"Login failed: {response.status_code} - {response.text}")

        try:
            data = response.json()
        except ValueError:
            raise BookingPlatformError("Login response is not JSON")
        result = _as_dict(_as_dict(data).get("result"))
        token = result.get("access-token")
        if not token or not isinstance(token, str):
            raise BookingPlatformError("No access-token in login response")
        company = _as_dict(_as_dict(result.get("user")).get("company"))
        return AuthToken(
            token=token,
            user_id=credentials.user_id,
            company_id=_company_id(company.get("id")) or self.default_company_id,
            timezone=_timezone_name(company.get("timezoneRegionName") or result.get("timezoneRegionName")),
        )

    async def get_company_timezone(self, token: str) -> Optional[str]:
        """Return the company's IANA timezone name, or None if the lookup fails."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/api/company", headers=self._headers(token))
            if not response.is_success:
                logger.warning(f"Company lookup returned {response.status_code}; timezone unknown")
                return None
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch company timezone: {str(e)}")
            return None
        timezone_name = _timezone_name(_as_dict(_as_dict(body).get("result")).get("timezoneRegionName"))
        if timezone_name is None:
            logger.warning("Company lookup returned no usable timezoneRegionName")
        return timezone_name

    async def authenticate(self, credentials: Credentials) -> AuthToken:
        """Log in, then look up the company timezone; the login's own value is the fallback."""
        auth = await self.login(credentials)
        auth.timezone = await self.get_company_timezone(auth.token) or auth.timezone
        return auth

    async def create_booking(self, token: str, payload: BookingPayload) -> BookingResult:
        headers = self._headers(token)
        headers["timezone-offset"] = self.timezone_offset_header
        headers["user-agent"] = "Mozilla/5.0"
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/api/ob/obr/book/",
                headers=headers,
                json=payload.to_request(),
            )
        try:
            body: Any = response.json()
        except ValueError:
            body = {"message": response.text or None}
        if not isinstance(body, dict):
            body = {"result": body}

        if response.is_success:
            booking_id = (body.get("result") or {}).get("id") if isinstance(body.get("result"), dict) else None
            booking_id = booking_id or body.get("id")
            return BookingResult(
                success=True,
                booking_id=str(booking_id) if booking_id is not None else None,
                response=body,
            )
        return BookingResult(success=False, error=body.get("message") or "Unknown error", response=body)
