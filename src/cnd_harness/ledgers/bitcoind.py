# bitcoind.py
# bitcoind in regtest mode, authenticated through its RPC cookie.

from pathlib import Path

from cnd_harness.errors import CredentialExtractionError
from cnd_harness.ledgers.base import LedgerInstance
from cnd_harness.models import BitcoinNodeConfig, LedgerKind

CONFIG_TEMPLATE = """\
regtest=1
server=1
printtoconsole=1
rpcallowip=0.0.0.0/0
nodebug=1
rest=1
acceptnonstdtxn=0
zmqpubrawblock=tcp://127.0.0.1:{zmq_pub_raw_block_port}
zmqpubrawtx=tcp://127.0.0.1:{zmq_pub_raw_tx_port}

[regtest]
bind=0.0.0.0:{p2p_port}
rpcbind=0.0.0.0:{rpc_port}
"""


class BitcoindInstance(LedgerInstance):
    kind = LedgerKind.BITCOIN
    default_name = "bitcoind"
    readiness_marker = "init message: Done loading"

    p2p_port: int
    rpc_port: int
    zmq_pub_raw_block_port: int
    zmq_pub_raw_tx_port: int

    username: str | None = None
    password: str | None = None

    async def allocate_ports(self) -> None:
        self.p2p_port = await self._ports.allocate(18444)
        self.rpc_port = await self._ports.allocate(18443)
        self.zmq_pub_raw_block_port = await self._ports.allocate(28332)
        self.zmq_pub_raw_tx_port = await self._ports.allocate(28333)

    def write_config_file(self) -> None:
        output = CONFIG_TEMPLATE.format(
            p2p_port=self.p2p_port,
            rpc_port=self.rpc_port,
            zmq_pub_raw_block_port=self.zmq_pub_raw_block_port,
            zmq_pub_raw_tx_port=self.zmq_pub_raw_tx_port,
        )
        (self.data_dir / "bitcoin.conf").write_text(output, encoding="utf-8")

    def arguments(self) -> list[str]:
        return [f"-datadir={self.data_dir}"]

    def readiness_log(self) -> Path:
        return self.data_dir / "regtest" / "debug.log"

    @property
    def cookie_path(self) -> Path:
        return self.data_dir / "regtest" / ".cookie"

    def extract_credentials(self) -> None:
        try:
            content = self.cookie_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise CredentialExtractionError(
                f"Could not read bitcoind cookie at {self.cookie_path}: {exc}"
            ) from exc

        username, sep, password = content.partition(":")
        if not sep or not username or not password:
            raise CredentialExtractionError(f"Malformed bitcoind cookie at {self.cookie_path}")

        self.username = username
        self.password = password

    def build_config(self) -> BitcoinNodeConfig:
        return BitcoinNodeConfig(
            network="regtest",
            host="localhost",
            rpc_port=self.rpc_port,
            p2p_port=self.p2p_port,
            zmq_pub_raw_block_port=self.zmq_pub_raw_block_port,
            zmq_pub_raw_tx_port=self.zmq_pub_raw_tx_port,
            username=self.username,
            password=self.password,
            data_dir=str(self.data_dir),
            rpc_url=f"http://localhost:{self.rpc_port}",
        )
