from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from paylock.core.config import Config, VaultConfig
from paylock.core.types import Network
from paylock.payment.coordinator import PaymentCoordinator

TEST_ENCRYPTION_KEY = "3f9a1c7e5b2d8f4a6c0e9b1d3f5a7c9e2b4d6f8a0c1e3b5d7f9a2c4e6b8d0f1a"


def make_record(
    blockchain_identifier: str = "bc-1",
    on_chain_state: str | None = None,
    purchaser: str = "buyer-123",
    **extra: Any,
) -> dict[str, Any]:
    """A payment record shaped like the settlement service returns it."""
    record = {
        "id": f"row-{blockchain_identifier}",
        "blockchainIdentifier": blockchain_identifier,
        "agentIdentifier": "agent-1",
        "identifierFromPurchaser": purchaser,
        "onChainState": on_chain_state,
        "payByTime": "2026-01-01T12:00:00.000Z",
        "submitResultTime": "2026-01-02T00:00:00.000Z",
        "unlockTime": "1767398400000",
        "externalDisputeUnlockTime": "1767484800000",
        "RequestedFunds": [{"amount": "10000000", "unit": "lovelace"}],
        "NextAction": {
            "requestedAction": "WaitingForExternalAction",
            "errorType": None,
            "errorNote": None,
            "resultHash": None,
        },
    }
    record.update(extra)
    return record


@pytest.fixture
def record():
    """Factory for settlement-service payment records."""
    return make_record


@pytest.fixture
def config():
    return Config(
        payment_service_url="http://localhost:3001/api/v1",
        payment_api_key="test_api_key_123456",
        network=Network.PREPROD,
        agent_identifier="agent-1",
    )


@pytest.fixture
def settlement():
    """Settlement client double; tests program post/get per scenario."""
    client = MagicMock()
    client.post = AsyncMock()
    client.get = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def coordinator(config, settlement):
    return PaymentCoordinator(config, settlement)


@pytest.fixture
def recorder(coordinator):
    """Subscribe to every signal and collect delivered events in order."""
    from paylock.core.types import Signal

    events = []
    for signal in Signal:
        coordinator.subscribe(signal, events.append)
    return events


@pytest.fixture
def vault_config(tmp_path):
    return VaultConfig(encryption_key=TEST_ENCRYPTION_KEY, credentials_dir=tmp_path / "credentials")
