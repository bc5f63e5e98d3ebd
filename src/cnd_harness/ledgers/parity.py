# parity.py
# Parity dev chain with a single authority.
#
# Chain spec, keys and the authority password ship with the project under
# blockchain_nodes/parity. Each instance gets its own fresh database dir.

from pathlib import Path

from cnd_harness.errors import ConfigurationError
from cnd_harness.ledgers.base import LedgerInstance
from cnd_harness.models import EthereumNodeConfig, LedgerKind

PARITY_HOME = Path("blockchain_nodes/parity/home/parity")
PARITY_BASE = PARITY_HOME / ".local/share/io.parity.ethereum"


class ParityInstance(LedgerInstance):
    kind = LedgerKind.ETHEREUM
    default_name = "parity"
    readiness_marker = "Public node URL:"

    rpc_port: int
    p2p_port: int

    @property
    def base_path(self) -> Path:
        return self.harness_config.project_root / PARITY_BASE

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db"

    def _project_files(self) -> dict[str, Path]:
        return {
            "config": self.base_path / "config.toml",
            "chain": self.base_path / "chain.json",
            "password": self.harness_config.project_root / PARITY_HOME / "authorities" / "authority.pwd",
        }

    async def allocate_ports(self) -> None:
        self.rpc_port = await self._ports.allocate(8545)
        self.p2p_port = await self._ports.allocate()

    def write_config_file(self) -> None:
        missing = [str(path) for path in self._project_files().values() if not path.exists()]
        if missing:
            raise ConfigurationError(f"Parity project files missing: {', '.join(missing)}")
        self.db_path.mkdir(parents=True, exist_ok=True)

    def working_dir(self) -> Path:
        return self.harness_config.project_root

    def arguments(self) -> list[str]:
        files = self._project_files()
        return [
            "--force-direct",
            "--no-download",
            f"--config={files['config']}",
            f"--chain={files['chain']}",
            f"--base-path={self.base_path}",
            f"--db-path={self.db_path}",
            f"--password={files['password']}",
            f"--jsonrpc-port={self.rpc_port}",
            f"--port={self.p2p_port}",
            "--no-ws",
        ]

    def build_config(self) -> EthereumNodeConfig:
        return EthereumNodeConfig(
            network="regtest",
            host="localhost",
            rpc_port=self.rpc_port,
            p2p_port=self.p2p_port,
            data_dir=str(self.data_dir),
            rpc_url=f"http://localhost:{self.rpc_port}",
        )
