"""Agent registry: registration and discovery of service-providing agents."""

from paylock.registry.manager import RegistryManager
from paylock.registry.types import (
    AgentAuthor,
    AgentCapability,
    AgentPricing,
    RegisterAgentParams,
    RegisteredAgent,
)

__all__ = [
    "RegistryManager",
    "AgentAuthor",
    "AgentCapability",
    "AgentPricing",
    "RegisterAgentParams",
    "RegisteredAgent",
]
