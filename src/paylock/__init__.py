"""
Paylock - Escrow payment lifecycle engine for service-providing agents.

Create a payment request on your own settlement node, watch it until the
purchaser's funds are locked, bind your output to the purchaser's input
with a verifiable hash, and get paid.

Usage:
    >>> from paylock import Paylock, Signal
    >>>
    >>> paylock = Paylock(agent_identifier="agent-1")
    >>> paylock.on(Signal.FUNDS_LOCKED, handle_paid_job)
    >>> payment = await paylock.create_payment("buyer-123", {"q": "x"})
    >>> paylock.start_monitoring(30)
"""

from paylock.client import Paylock
from paylock.core.api_client import Envelope, SettlementClient
from paylock.core.config import Config, VaultConfig, generate_encryption_key
from paylock.core.exceptions import (
    AgentNotFoundError,
    ConfigurationError,
    CredentialNotFoundError,
    DecryptionError,
    NotTrackedError,
    PaylockError,
    PaymentTimeoutError,
    RequestError,
    RequestErrorKind,
    ValidationError,
    VaultError,
)
from paylock.core.types import (
    CreatePaymentParams,
    LifecycleEvent,
    Network,
    NextAction,
    PaymentAmount,
    PaymentPage,
    PaymentRequest,
    PaymentState,
    Signal,
)
from paylock.hashing import decision_hash, hash_input, hash_output, verify_binding
from paylock.payment import PaymentCoordinator, next_state
from paylock.registry import (
    AgentAuthor,
    AgentCapability,
    AgentPricing,
    RegisteredAgent,
    RegisterAgentParams,
    RegistryManager,
)
from paylock.resilience import RetryPolicy
from paylock.vault import CredentialVault, StoredCredential

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "Paylock",
    "PaymentCoordinator",
    "SettlementClient",
    "Envelope",
    "RetryPolicy",
    # Config
    "Config",
    "VaultConfig",
    "generate_encryption_key",
    # Types
    "Network",
    "PaymentState",
    "Signal",
    "PaymentRequest",
    "PaymentAmount",
    "PaymentPage",
    "NextAction",
    "CreatePaymentParams",
    "LifecycleEvent",
    # Hashing
    "hash_input",
    "hash_output",
    "decision_hash",
    "verify_binding",
    # State machine
    "next_state",
    # Registry
    "RegistryManager",
    "RegisterAgentParams",
    "RegisteredAgent",
    "AgentCapability",
    "AgentAuthor",
    "AgentPricing",
    # Vault
    "CredentialVault",
    "StoredCredential",
    # Exceptions
    "PaylockError",
    "ConfigurationError",
    "ValidationError",
    "RequestError",
    "RequestErrorKind",
    "NotTrackedError",
    "PaymentTimeoutError",
    "VaultError",
    "DecryptionError",
    "CredentialNotFoundError",
    "AgentNotFoundError",
]
