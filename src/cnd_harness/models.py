# models.py
# Data contracts for the cnd test harness.
# No business logic lives here — pure schema and validation.

from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LedgerKind(str, Enum):
    BITCOIN = "bitcoin"
    ETHEREUM = "ethereum"
    LIGHTNING = "lightning"


class InstanceState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class ActionKind(str, Enum):
    """Names of the actions a daemon lists on a swap resource."""

    ACCEPT = "accept"
    DECLINE = "decline"
    DEPLOY = "deploy"
    FUND = "fund"
    REDEEM = "redeem"
    REFUND = "refund"
    INIT = "init"


# ---------------------------------------------------------------------------
# Ledger connection descriptors
# ---------------------------------------------------------------------------


class LedgerConfig(BaseModel):
    """How to reach a running ledger node. Read-only once produced."""

    model_config = ConfigDict(frozen=True)

    network: str = Field(default="regtest")
    host: str = Field(default="localhost")
    rpc_port: int
    p2p_port: int
    username: str | None = None
    password: str | None = None
    data_dir: str
    rpc_url: str


class BitcoinNodeConfig(LedgerConfig):
    zmq_pub_raw_block_port: int
    zmq_pub_raw_tx_port: int
    miner_wallet: str | None = None


class EthereumNodeConfig(LedgerConfig):
    pass


class LightningNodeConfig(LedgerConfig):
    grpc_port: int
    rest_port: int
    tls_cert_path: str
    macaroon_path: str


# ---------------------------------------------------------------------------
# Scenario scripts
# ---------------------------------------------------------------------------


AfterTestCallback = Callable[[dict[str, str]], Awaitable[Any]]


class AfterTest(BaseModel):
    """Post-condition checked after a step, bounded by its own timeout."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    description: str
    callback: AfterTestCallback
    timeout: float = Field(default=10.0, gt=0, description="Seconds.")


class ActionStep(BaseModel):
    """One entry of a scenario script. Steps execute strictly in order."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    actor: str = Field(..., description="Name of the actor performing the action.")
    action: ActionKind
    request_body: dict[str, Any] | None = None
    uri_query: dict[str, Any] | None = None
    after_test: AfterTest | None = None
    blocking: bool = Field(
        default=True,
        description="False starts the action in the background and moves on.",
    )

    @model_validator(mode="after")
    def _background_steps_have_no_post_condition(self) -> "ActionStep":
        if not self.blocking and self.after_test is not None:
            raise ValueError("A non-blocking step cannot declare an after_test.")
        return self

    @property
    def description(self) -> str:
        return f"[{self.actor}] {self.action.value}"


class StepRecord(BaseModel):
    """Outcome of one executed step, used for the scenario summary."""

    index: int
    actor: str
    action: ActionKind
    passed: bool
    background: bool = False
    detail: str = Field(default="")
