"""Resolve per-call agent configuration."""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from voice_server.core.config import Settings
from voice_server.core.errors import ConfigurationMissing
from voice_server.services.call_config.models import AgentConfiguration
from voice_server.services.persistence.conversation_log import (
    ConversationLog,
    agent_config_thread,
    call_config_thread,
)

logger = logging.getLogger(__name__)


class CallConfigResolver:
    """
    Looks up agent configuration for a call.

    Order: the latest ``CALL_CONFIG`` record stored locally for the call,
    then the configuration owner's HTTP API. Nothing found raises
    ``ConfigurationMissing``.
    """

    def __init__(
        self,
        settings: Settings,
        conversation_log: Optional[ConversationLog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.conversation_log = conversation_log
        self.http_client = http_client

    async def resolve(self, call_sid: str) -> AgentConfiguration:
        """
        Raises:
            ConfigurationMissing: If no configuration can be resolved
        """
        payload = await self._lookup(call_config_thread(call_sid))
        source = "store"
        if payload is None:
            payload = await self._fetch(f"/api/twilio/call-config/{call_sid}")
            source = "api"
        return self._build(payload, f"call {call_sid}", source)

    async def resolve_agent(self, agent_id: str) -> AgentConfiguration:
        """Configuration for a web session's agent."""
        payload = await self._lookup(agent_config_thread(agent_id))
        source = "store"
        if payload is None:
            payload = await self._fetch(f"/api/agents/{agent_id}/voice-config")
            source = "api"
        if payload is not None:
            payload.setdefault("agentId", agent_id)
        return self._build(payload, f"agent {agent_id}", source)

    async def store(self, call_sid: str, payload: Dict[str, Any]) -> None:
        """Write the fast-path record for a call."""
        if self.conversation_log is None:
            raise ConfigurationMissing("No local configuration store")
        await self.conversation_log.store_config(call_config_thread(call_sid), payload)

    def _build(
        self, payload: Optional[Dict[str, Any]], subject: str, source: str
    ) -> AgentConfiguration:
        if payload is None:
            logger.error(f"[CALL CONFIG] No configuration found for {subject}")
            raise ConfigurationMissing(f"No configuration for {subject}")
        try:
            config = AgentConfiguration.model_validate(payload)
        except ValidationError as e:
            logger.error(f"[CALL CONFIG] Invalid configuration for {subject}: {str(e)}")
            raise ConfigurationMissing(f"Invalid configuration for {subject}") from e
        logger.info(
            f"[CALL CONFIG] Resolved configuration for {subject} from {source} "
            f"- Agent: {config.agent_id}"
        )
        return config

    async def _lookup(self, thread_id: str) -> Optional[Dict[str, Any]]:
        if self.conversation_log is None:
            return None
        try:
            return await self.conversation_log.latest_config(thread_id)
        except Exception as e:
            logger.error(f"[CALL CONFIG] Store lookup failed for {thread_id}: {str(e)}")
            return None

    async def _fetch(self, path: str) -> Optional[Dict[str, Any]]:
        if not self.settings.config_api_url:
            return None

        url = f"{self.settings.config_api_url.rstrip('/')}{path}"
        headers = {"Content-Type": "application/json"}
        if self.settings.internal_api_key:
            headers["Authorization"] = f"Bearer {self.settings.internal_api_key}"

        try:
            if self.http_client is not None:
                response = await self.http_client.get(
                    url, headers=headers, timeout=self.settings.config_request_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.config_request_timeout) as client:
                    response = await client.get(url, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[CALL CONFIG] Request to {url} failed: {str(e)}")
            return None
        return data if isinstance(data, dict) and data else None
