"""
Agent registry types.

Records the settlement node's registry returns when an agent is registered
or looked up. Wire names are the service's PascalCase/camelCase members.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from paylock.core.exceptions import ValidationError
from paylock.core.types import Network, PaymentAmount

PRICING_FIXED = "Fixed"
PRICING_FREE = "Free"


@dataclass(frozen=True)
class AgentCapability:
    """What the agent does, e.g. ``data-analysis`` at version ``1.0.0``."""

    name: str
    version: str
    description: str | None = None


@dataclass(frozen=True)
class AgentAuthor:
    name: str
    contact_email: str | None = None
    website: str | None = None
    organization: str | None = None


@dataclass(frozen=True)
class AgentPricing:
    """Fixed price in one or more units, or free."""

    pricing_type: str = PRICING_FIXED
    amounts: tuple[PaymentAmount, ...] = ()


@dataclass(frozen=True)
class RegisterAgentParams:
    """Parameters for registering an agent."""

    name: str
    description: str
    api_base_url: str
    capability: AgentCapability
    author: AgentAuthor
    pricing: AgentPricing
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("Agent name is required")
        if not self.api_base_url:
            raise ValidationError("api_base_url is required")
        if self.pricing.pricing_type not in (PRICING_FIXED, PRICING_FREE):
            raise ValidationError(
                f"Unsupported pricing type: {self.pricing.pricing_type}",
                details={"supported": [PRICING_FIXED, PRICING_FREE]},
            )
        if self.pricing.pricing_type == PRICING_FIXED and not self.pricing.amounts:
            raise ValidationError("Fixed pricing needs at least one amount")

    def to_payload(self, network: Network) -> dict[str, Any]:
        author: dict[str, Any] = {"name": self.author.name}
        if self.author.contact_email:
            author["contactEmail"] = self.author.contact_email
        if self.author.website:
            author["contactOther"] = self.author.website
        if self.author.organization:
            author["organization"] = self.author.organization

        pricing: dict[str, Any] = {"pricingType": self.pricing.pricing_type}
        if self.pricing.pricing_type == PRICING_FIXED:
            pricing["amounts"] = [
                {"amount": a.amount, "unit": a.unit} for a in self.pricing.amounts
            ]

        payload: dict[str, Any] = {
            "network": Network(network).value,
            "name": self.name,
            "description": self.description,
            "apiBaseUrl": self.api_base_url,
            "Capability": {"name": self.capability.name, "version": self.capability.version},
            "Author": author,
            "Pricing": pricing,
        }
        if self.tags:
            payload["tags"] = list(self.tags)
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass(frozen=True)
class RegisteredAgent:
    """An agent as known to the registry."""

    agent_identifier: str | None
    state: str
    network: Network
    name: str
    api_base_url: str
    description: str = ""
    capability: AgentCapability | None = None
    author: AgentAuthor | None = None
    pricing: AgentPricing | None = None
    tags: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api_response(
        cls,
        data: dict[str, Any],
        network: Network,
        pricing: AgentPricing | None = None,
    ) -> RegisteredAgent:
        """
        Build from a registry entry.

        ``pricing`` stands in when the entry carries no ``AgentPricing``
        (registration responses echo everything except the price).
        """
        if not isinstance(data, dict):
            raise ValidationError("Registry entry is not an object", details={"entry": repr(data)})
        try:
            capability = data.get("Capability") or {}
            author = data.get("Author") or {}
            agent_pricing = data.get("AgentPricing")
            if agent_pricing:
                pricing = AgentPricing(
                    pricing_type=agent_pricing.get("pricingType", PRICING_FIXED),
                    amounts=tuple(
                        PaymentAmount.from_api_response(a) for a in agent_pricing.get("Pricing") or []
                    ),
                )
            return cls(
                agent_identifier=data.get("agentIdentifier"),
                state=data["state"],
                network=network,
                name=data["name"],
                api_base_url=data["apiBaseUrl"],
                description=data.get("description") or "",
                capability=AgentCapability(
                    name=capability.get("name") or "",
                    version=capability.get("version") or "",
                ),
                author=AgentAuthor(
                    name=author.get("name") or "",
                    contact_email=author.get("contactEmail"),
                    website=author.get("contactOther"),
                    organization=author.get("organization"),
                ),
                pricing=pricing,
                tags=tuple(data.get("Tags") or ()),
                raw=dict(data),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValidationError(
                f"Malformed registry entry: {e}",
                details={"entry": data},
            ) from e
