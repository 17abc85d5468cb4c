"""
Unit tests for the Paylock client.

Tests the main entry point: configuration loading, wiring of the settlement
client and delegation to the coordinator.
"""

import os
from unittest.mock import patch

import pytest

from conftest import make_record
from paylock import Paylock
from paylock.core.api_client import SELLER_VKEY_HEADER
from paylock.core.exceptions import CredentialNotFoundError
from paylock.core.types import Network, PaymentState, Signal
from paylock.vault import CredentialVault


@pytest.fixture
def mock_env():
    with patch.dict(
        os.environ,
        {
            "PAYLOCK_PAYMENT_SERVICE_URL": "http://localhost:3001/api/v1",
            "PAYLOCK_PAYMENT_API_KEY": "env_api_key_123456",
            "PAYLOCK_AGENT_IDENTIFIER": "agent-env",
        },
    ):
        yield


class TestClientInitialization:
    def test_init_from_env(self, mock_env) -> None:
        paylock = Paylock()

        assert paylock.config.payment_api_key == "env_api_key_123456"
        assert paylock.config.agent_identifier == "agent-env"
        assert paylock.settlement.base_url == "http://localhost:3001/api/v1"

    def test_overrides_win(self, mock_env) -> None:
        paylock = Paylock(agent_identifier="agent-override", network=Network.MAINNET)

        assert paylock.config.agent_identifier == "agent-override"
        assert paylock.config.network == Network.MAINNET

    def test_explicit_config_with_updates(self, config) -> None:
        paylock = Paylock(config=config, max_retries=5)

        assert paylock.config.max_retries == 5
        assert paylock.config.agent_identifier == "agent-1"

    def test_seller_vkey_header(self, config) -> None:
        paylock = Paylock(config=config.with_updates(seller_vkey="vkey-xyz"))

        assert paylock.settlement.headers[SELLER_VKEY_HEADER] == "vkey-xyz"

    def test_no_vkey_header_by_default(self, config) -> None:
        paylock = Paylock(config=config)

        assert SELLER_VKEY_HEADER not in paylock.settlement.headers


class TestClientOperations:
    @pytest.mark.asyncio
    async def test_create_and_check(self, config, settlement) -> None:
        paylock = Paylock(config=config, client=settlement)
        seen = []
        paylock.on(Signal.FUNDS_LOCKED, seen.append)

        settlement.post.return_value = make_record("bc-1", None)
        created = await paylock.create_payment("buyer-123", {"q": "x"}, metadata="Job 42")
        assert created.input_digest is not None

        settlement.post.return_value = make_record("bc-1", "FundsLocked")
        status = await paylock.check_status("bc-1")

        assert status.state == PaymentState.FUNDS_LOCKED
        assert [e.blockchain_identifier for e in seen] == ["bc-1"]
        assert paylock.payments.get("bc-1") == status

    @pytest.mark.asyncio
    async def test_submit_and_refund_delegate(self, config, settlement) -> None:
        paylock = Paylock(config=config, client=settlement)
        settlement.post.return_value = make_record("bc-1", "FundsLocked")
        await paylock.check_status("bc-1")

        submitted = await paylock.submit_result("bc-1", "42")
        assert submitted.result_digest is not None

        settlement.post.return_value = make_record("bc-1", "RefundAuthorized")
        refunded = await paylock.authorize_refund("bc-1")
        assert refunded.state == PaymentState.REFUND_AUTHORIZED

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, config, settlement) -> None:
        async with Paylock(config=config, client=settlement) as paylock:
            paylock.start_monitoring(10)
            assert paylock.payments.is_monitoring

        assert not paylock.payments.is_monitoring
        settlement.close.assert_awaited_once()


class TestFromVault:
    def test_builds_config_from_credential(self, vault_config) -> None:
        vault = CredentialVault(vault_config)
        vault.save(
            "agent-7",
            Network.PREPROD,
            wallet_address="addr_test1q",
            wallet_vkey="vkey-7",
            mnemonic="word " * 24,
            api_key="vault_api_key_123456",
            registry_url="http://localhost:3000/api/v1",
        )

        paylock = Paylock.from_vault(
            vault,
            "agent-7",
            payment_service_url="http://localhost:3001/api/v1",
            network=Network.PREPROD,
        )

        assert paylock.config.agent_identifier == "agent-7"
        assert paylock.config.payment_api_key == "vault_api_key_123456"
        assert paylock.config.seller_vkey == "vkey-7"
        assert paylock.config.registry_service_url == "http://localhost:3000/api/v1"
        assert paylock.settlement.headers[SELLER_VKEY_HEADER] == "vkey-7"

    def test_missing_credential(self, vault_config) -> None:
        vault = CredentialVault(vault_config)

        with pytest.raises(CredentialNotFoundError):
            Paylock.from_vault(vault, "nobody", network=Network.MAINNET)
