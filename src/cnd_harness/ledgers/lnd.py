# lnd.py
# lnd on regtest, backed by a running bitcoind instance.
#
# lnd writes its TLS certificate during startup; the admin macaroon only
# appears once a wallet has been created, so its path is recorded but not
# required here.

from pathlib import Path

from cnd_harness.binaries import BinaryResolver
from cnd_harness.config import HarnessConfig
from cnd_harness.errors import CredentialExtractionError
from cnd_harness.ledgers.base import LedgerInstance
from cnd_harness.models import BitcoinNodeConfig, LedgerKind, LightningNodeConfig
from cnd_harness.ports import PortAllocator
from cnd_harness.registry import NodeRegistry

CONFIG_TEMPLATE = """\
[Application Options]
datadir={data_dir}/data
logdir={data_dir}/logs
tlscertpath={data_dir}/tls.cert
tlskeypath={data_dir}/tls.key
listen=0.0.0.0:{p2p_port}
rpclisten=localhost:{grpc_port}
restlisten=localhost:{rest_port}
debuglevel=info

[Bitcoin]
bitcoin.active=true
bitcoin.regtest=true
bitcoin.node=bitcoind

[Bitcoind]
bitcoind.rpchost=localhost:{bitcoind_rpc_port}
bitcoind.rpcuser={bitcoind_username}
bitcoind.rpcpass={bitcoind_password}
bitcoind.zmqpubrawblock=tcp://127.0.0.1:{zmq_pub_raw_block_port}
bitcoind.zmqpubrawtx=tcp://127.0.0.1:{zmq_pub_raw_tx_port}
"""


class LndInstance(LedgerInstance):
    kind = LedgerKind.LIGHTNING
    default_name = "lnd"
    readiness_marker = "Waiting for wallet encryption password"

    p2p_port: int
    grpc_port: int
    rest_port: int

    def __init__(
        self,
        config: HarnessConfig,
        registry: NodeRegistry,
        ports: PortAllocator,
        resolver: BinaryResolver,
        bitcoind: BitcoinNodeConfig,
        name: str | None = None,
        version: str | None = None,
    ) -> None:
        super().__init__(config, registry, ports, resolver, name=name, version=version)
        self.bitcoind = bitcoind

    @property
    def tls_cert_path(self) -> Path:
        return self.data_dir / "tls.cert"

    @property
    def macaroon_path(self) -> Path:
        return self.data_dir / "data" / "chain" / "bitcoin" / "regtest" / "admin.macaroon"

    async def allocate_ports(self) -> None:
        self.p2p_port = await self._ports.allocate(9735)
        self.grpc_port = await self._ports.allocate(10009)
        self.rest_port = await self._ports.allocate(8080)

    def write_config_file(self) -> None:
        output = CONFIG_TEMPLATE.format(
            data_dir=self.data_dir,
            p2p_port=self.p2p_port,
            grpc_port=self.grpc_port,
            rest_port=self.rest_port,
            bitcoind_rpc_port=self.bitcoind.rpc_port,
            bitcoind_username=self.bitcoind.username or "",
            bitcoind_password=self.bitcoind.password or "",
            zmq_pub_raw_block_port=self.bitcoind.zmq_pub_raw_block_port,
            zmq_pub_raw_tx_port=self.bitcoind.zmq_pub_raw_tx_port,
        )
        (self.data_dir / "lnd.conf").write_text(output, encoding="utf-8")

    def arguments(self) -> list[str]:
        return [f"--lnddir={self.data_dir}"]

    def extract_credentials(self) -> None:
        if not self.tls_cert_path.exists():
            raise CredentialExtractionError(f"lnd did not write its TLS cert to {self.tls_cert_path}")

    def build_config(self) -> LightningNodeConfig:
        return LightningNodeConfig(
            network="regtest",
            host="localhost",
            rpc_port=self.grpc_port,
            p2p_port=self.p2p_port,
            grpc_port=self.grpc_port,
            rest_port=self.rest_port,
            tls_cert_path=str(self.tls_cert_path),
            macaroon_path=str(self.macaroon_path),
            data_dir=str(self.data_dir),
            rpc_url=f"https://localhost:{self.rest_port}",
        )
