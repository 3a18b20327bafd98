import httpx
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import logging

from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings
from ..schemas.pydantic_schemas import RetellCall

# Set up logger
logger = logging.getLogger(__name__)


class RetellClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.api_key = settings.retell_api_key
        self.base_url = settings.retell_base_url.rstrip("/")
        self.timeout = settings.http_timeout
        self.lookback_hours = settings.lookback_hours
        self.limit = settings.list_calls_limit
        self._transport = transport
        self.simulated = not self.api_key or len(self.api_key.strip()) == 0

        if self.simulated:
            logger.info("RetellClient initialized in simulation mode (no API key provided)")
        else:
            logger.info("RetellClient initialized with API key")

    def _build_list_request(self, agent_id: str, now_ms: Optional[int] = None) -> Dict[str, Any]:
        if now_ms is None:
            now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        lower_threshold = now_ms - self.lookback_hours * 60 * 60 * 1000
        return {
            "filter_criteria": {
                "agent_id": [agent_id],
                "start_timestamp": {"lower_threshold": lower_threshold},
            },
            "limit": self.limit,
            "sort_order": "descending",
        }

    @retry(
        wait=wait_exponential(min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_list_calls(self, payload: Dict[str, Any]) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/v2/list-calls", headers=headers, json=payload)
            response.raise_for_status()
            return response.json()

    async def list_calls(self, agent_id: str) -> List[RetellCall]:
        """Fetch the agent's calls from the look-back window, newest first.

        Provider failures are logged and reported as no calls.
        """
        logger.info(f"Fetching calls for agent: {agent_id}")

        if self.simulated:
            logger.info(f"[SIMULATED] No calls listed for agent {agent_id}")
            return []

        try:
            data = await self._post_list_calls(self._build_list_request(agent_id))
        except httpx.HTTPStatusError as e:
            logger.error(f"Retell list-calls failed with status {e.response.status_code} for agent {agent_id}")
            return []
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Error fetching calls from Retell for agent {agent_id}: {str(e)}")
            return []

        if not isinstance(data, list):
            logger.warning(f"Unexpected list-calls response shape for agent {agent_id}")
            return []

        calls: List[RetellCall] = []
        for item in data:
            try:
                calls.append(RetellCall.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed call snapshot for agent {agent_id}: {e.error_count()} errors")
        logger.info(f"Fetched {len(calls)} calls for agent {agent_id}")
        return calls
