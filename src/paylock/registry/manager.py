"""
RegistryManager - Registers and looks up agents on the settlement node's registry.

Registration is where an agent's identifier comes from; payments cannot be
created until one is configured. The registry API has no update endpoint,
so changing an agent means registering it again.
"""

from __future__ import annotations

from typing import Any

from paylock.core.api_client import SettlementClient
from paylock.core.exceptions import AgentNotFoundError, ValidationError
from paylock.core.logging import get_logger
from paylock.core.types import Network
from paylock.registry.types import RegisterAgentParams, RegisteredAgent

REGISTRY_PATH = "/registry"


class RegistryManager:
    """
    Agent registration and discovery.

    Example:
        >>> registry = RegistryManager(client, Network.PREPROD)
        >>> agent = await registry.register_agent(params)
        >>> print(agent.agent_identifier)
    """

    def __init__(self, client: SettlementClient, network: Network) -> None:
        self._client = client
        self._network = Network(network)
        self._logger = get_logger("registry")
        self._agents: dict[str, RegisteredAgent] = {}

    @property
    def network(self) -> Network:
        return self._network

    def cached(self) -> dict[str, RegisteredAgent]:
        """Agents registered or looked up through this manager, by identifier."""
        return dict(self._agents)

    def clear_cache(self) -> None:
        self._agents.clear()

    def _remember(self, agent: RegisteredAgent) -> RegisteredAgent:
        if agent.agent_identifier:
            self._agents[agent.agent_identifier] = agent
        return agent

    @staticmethod
    def _assets(data: Any) -> list[Any]:
        if not isinstance(data, dict):
            raise ValidationError("Registry listing is not an object", details={"data": repr(data)})
        return list(data.get("Assets") or [])

    async def register_agent(self, params: RegisterAgentParams) -> RegisteredAgent:
        """
        Register an agent on the configured network.

        The returned agent's ``agent_identifier`` may be None while the
        registration transaction is still pending on-chain.

        Raises:
            RequestError: If the registry call fails
            ValidationError: If the response is not a registry entry
        """
        self._logger.info(f"Registering agent {params.name} on {self._network.value}")
        data = await self._client.post(REGISTRY_PATH, params.to_payload(self._network))
        agent = RegisteredAgent.from_api_response(data, self._network, pricing=params.pricing)
        self._logger.info(
            f"Agent {params.name} registered (identifier={agent.agent_identifier}, state={agent.state})"
        )
        return self._remember(agent)

    async def search_agents(
        self,
        capability: str | None = None,
        tags: list[str] | None = None,
        pricing_type: str | None = None,
        state: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[RegisteredAgent]:
        """Search the registry. Filters left as None are not sent."""
        params: dict[str, Any] = {
            "network": self._network.value,
            "capability": capability,
            "pricingType": pricing_type,
            "state": state,
            "limit": limit,
            "offset": offset,
            "tags": ",".join(tags) if tags else None,
        }
        data = await self._client.get(REGISTRY_PATH, params=params)
        return [
            RegisteredAgent.from_api_response(entry, self._network)
            for entry in self._assets(data)
        ]

    async def list_agents(self, limit: int = 10, offset: int = 0) -> list[RegisteredAgent]:
        return await self.search_agents(limit=limit, offset=offset)

    async def get_agent(self, agent_identifier: str) -> RegisteredAgent:
        """
        Look up one agent by identifier.

        Raises:
            AgentNotFoundError: If the registry has no such agent on this network
        """
        data = await self._client.get(REGISTRY_PATH, params={"network": self._network.value})
        for entry in self._assets(data):
            if isinstance(entry, dict) and entry.get("agentIdentifier") == agent_identifier:
                return self._remember(RegisteredAgent.from_api_response(entry, self._network))
        raise AgentNotFoundError(agent_identifier, self._network.value)
