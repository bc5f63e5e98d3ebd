# config.py
# Explicit harness configuration.
#
# Every component receives a HarnessConfig through its constructor. Nothing
# reads paths, ports or binaries from module-level state, so several isolated
# scenarios can share one process.

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cnd_harness.errors import ConfigurationError
from cnd_harness.models import LedgerKind

# Environment variables that pin a pre-built node binary and skip downloads.
BINARY_ENV_VARS: dict[LedgerKind, str] = {
    LedgerKind.BITCOIN: "BITCOIND_BIN",
    LedgerKind.ETHEREUM: "PARITY_BIN",
    LedgerKind.LIGHTNING: "LND_BIN",
}


def _default_cache_dir() -> Path:
    xdg = os.getenv("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "cnd-harness"


class HarnessConfig(BaseModel):
    """Paths, timeouts and overrides shared by one harness run."""

    model_config = ConfigDict(frozen=True)

    project_root: Path = Field(default_factory=Path.cwd)
    locks_dir: Path = Field(..., description="PID files and node data dirs live here.")
    log_dir: Path
    cache_dir: Path = Field(default_factory=_default_cache_dir)
    startup_timeout: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)
    http_timeout: float = Field(default=10.0, gt=0)
    binary_overrides: dict[LedgerKind, Path] = Field(default_factory=dict)

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> "HarnessConfig":
        """
        Build a config from the process environment (and a .env file, if any).

        Raises ConfigurationError when a value is present but invalid.
        """
        load_dotenv(find_dotenv(usecwd=True))
        root = Path(project_root or os.getenv("CND_HARNESS_PROJECT_ROOT") or Path.cwd())

        overrides = {
            kind: Path(os.environ[var])
            for kind, var in BINARY_ENV_VARS.items()
            if os.getenv(var)
        }

        values: dict = {
            "project_root": root,
            "locks_dir": os.getenv("CND_HARNESS_LOCKS_DIR") or root / "locks",
            "log_dir": os.getenv("CND_HARNESS_LOG_DIR") or root / "log",
            "binary_overrides": overrides,
        }
        if os.getenv("CND_HARNESS_CACHE_DIR"):
            values["cache_dir"] = os.environ["CND_HARNESS_CACHE_DIR"]
        if os.getenv("CND_HARNESS_STARTUP_TIMEOUT"):
            values["startup_timeout"] = os.environ["CND_HARNESS_STARTUP_TIMEOUT"]

        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid harness configuration: {exc}") from exc
