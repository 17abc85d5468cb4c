"""Paylock - Main entry point."""

from __future__ import annotations

import os
from typing import Any

from paylock.core.api_client import SELLER_VKEY_HEADER, SettlementClient
from paylock.core.config import Config
from paylock.core.logging import configure_logging, get_logger
from paylock.core.types import CreatePaymentParams, Network, PaymentRequest, Signal
from paylock.payment.coordinator import EventHandler, PaymentCoordinator
from paylock.registry import RegisteredAgent, RegisterAgentParams, RegistryManager
from paylock.resilience.retry import RetryPolicy
from paylock.vault.store import CredentialVault


class Paylock:
    """
    Main client for an agent that gets paid through escrow.

    Wires configuration, the settlement client and the payment coordinator.

    Example:
        >>> async with Paylock(agent_identifier="agent-1") as paylock:
        ...     paylock.on(Signal.FUNDS_LOCKED, do_work)
        ...     payment = await paylock.create_payment("buyer-123", {"q": "x"})
        ...     paylock.start_monitoring()
    """

    def __init__(
        self,
        config: Config | None = None,
        log_level: int | str | None = None,
        client: SettlementClient | None = None,
        **overrides: Any,
    ) -> None:
        """
        Initialize Paylock.

        Args:
            config: Explicit configuration; loaded from PAYLOCK_* env vars if None
            log_level: Logging level (default from PAYLOCK_LOG_LEVEL, else INFO)
            client: Pre-built settlement client, mostly for tests
            **overrides: Config fields overriding environment values
        """
        if config is None:
            config = Config.from_env(**overrides)
        elif overrides:
            config = config.with_updates(**overrides)
        self._config = config

        if log_level is None:
            log_level = os.environ.get("PAYLOCK_LOG_LEVEL", config.log_level)
        configure_logging(level=log_level, json_format=config.log_json)
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing Paylock (network={config.network.value}, "
            f"service={config.payment_service_url}, key={config.masked_api_key()})"
        )

        headers = {SELLER_VKEY_HEADER: config.seller_vkey} if config.seller_vkey else None
        self._client = client or SettlementClient(
            base_url=config.payment_service_url,
            api_key=config.payment_api_key,
            timeout=config.request_timeout,
            retry_policy=RetryPolicy(
                max_attempts=config.max_retries,
                initial_delay=config.retry_initial_delay,
            ),
            headers=headers,
        )
        self._coordinator = PaymentCoordinator(config, self._client)

        # The registry lives on the payment node unless pointed elsewhere
        self._registry_client = self._client
        registry_url = config.registry_service_url
        if registry_url and registry_url.rstrip("/") != config.payment_service_url.rstrip("/"):
            self._registry_client = SettlementClient(
                base_url=registry_url,
                api_key=config.payment_api_key,
                timeout=config.request_timeout,
                retry_policy=RetryPolicy(
                    max_attempts=config.max_retries,
                    initial_delay=config.retry_initial_delay,
                ),
            )
        self._registry = RegistryManager(self._registry_client, config.network)

    @classmethod
    def from_vault(
        cls,
        vault: CredentialVault,
        owner_identifier: str,
        payment_service_url: str | None = None,
        **overrides: Any,
    ) -> Paylock:
        """
        Build a client from a stored credential.

        The credential supplies the API key, the seller verification key and
        the registry URL; the owner identifier becomes the agent identifier.
        The recovery phrase is not decrypted.
        """
        network = overrides.pop("network", None) or Network.from_string(
            os.environ.get("PAYLOCK_NETWORK", Network.PREPROD.value)
        )
        credential = vault.load(owner_identifier, network)

        fields: dict[str, Any] = {
            "network": credential.network,
            "agent_identifier": owner_identifier,
            "seller_vkey": credential.wallet_vkey,
        }
        if credential.api_key:
            fields["payment_api_key"] = credential.api_key
        if credential.registry_url:
            fields["registry_service_url"] = credential.registry_url
        if payment_service_url:
            fields["payment_service_url"] = payment_service_url
        fields.update(overrides)
        return cls(**fields)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def payments(self) -> PaymentCoordinator:
        """The lifecycle coordinator."""
        return self._coordinator

    @property
    def settlement(self) -> SettlementClient:
        return self._client

    @property
    def registry(self) -> RegistryManager:
        return self._registry

    def on(self, signal: Signal, handler: EventHandler) -> None:
        """Subscribe to a lifecycle signal."""
        self._coordinator.subscribe(signal, handler)

    async def register_agent(self, params: RegisterAgentParams) -> RegisteredAgent:
        """
        Register this agent. If no agent identifier is configured yet, the
        one assigned by the registry is adopted for payment creation.
        """
        agent = await self._registry.register_agent(params)
        if agent.agent_identifier and not self._config.agent_identifier:
            self._config = self._config.with_updates(agent_identifier=agent.agent_identifier)
            self._coordinator.update_config(self._config)
            self._logger.info(f"Using registered agent identifier {agent.agent_identifier}")
        return agent

    async def create_payment(
        self,
        purchaser_identifier: str,
        input_data: Any = None,
        **kwargs: Any,
    ) -> PaymentRequest:
        """Create and track a payment request."""
        params = CreatePaymentParams(
            purchaser_identifier=purchaser_identifier,
            input_data=input_data,
            **kwargs,
        )
        return await self._coordinator.create(params)

    async def check_status(self, blockchain_identifier: str) -> PaymentRequest:
        return await self._coordinator.refresh(blockchain_identifier)

    async def submit_result(self, blockchain_identifier: str, output_payload: str) -> PaymentRequest:
        return await self._coordinator.submit_result(blockchain_identifier, output_payload)

    async def authorize_refund(self, blockchain_identifier: str) -> PaymentRequest:
        return await self._coordinator.authorize_refund(blockchain_identifier)

    def start_monitoring(self, interval: float | None = None) -> None:
        self._coordinator.start_monitoring(interval)

    def stop_monitoring(self) -> None:
        self._coordinator.stop_monitoring()

    async def close(self) -> None:
        """Stop monitoring and release the HTTP connection pool."""
        await self._coordinator.close()
        await self._client.close()
        if self._registry_client is not self._client:
            await self._registry_client.close()

    async def __aenter__(self) -> Paylock:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
