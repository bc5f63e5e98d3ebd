# run.py
# Entry point. Config and wiring only — no logic lives here.
#
# Starts the ledgers named in CND_HARNESS_LEDGERS (default: bitcoin,ethereum),
# prints how to reach them, and keeps them up until interrupted.

import asyncio
import os
import sys

from cnd_harness import display
from cnd_harness.config import HarnessConfig
from cnd_harness.environment import HarnessEnvironment
from cnd_harness.errors import HarnessError

DEFAULT_LEDGERS = "bitcoin,ethereum"


async def serve(config: HarnessConfig, ledgers: list[str]) -> None:
    config_file = config.log_dir / "ledgers.json"
    async with HarnessEnvironment(config, ledgers, config_file=config_file):
        await asyncio.Event().wait()


def main() -> int:
    try:
        config = HarnessConfig.from_env()
        ledgers = [name.strip() for name in os.getenv("CND_HARNESS_LEDGERS", DEFAULT_LEDGERS).split(",") if name.strip()]
        asyncio.run(serve(config, ledgers))
    except KeyboardInterrupt:
        return 0
    except (HarnessError, ValueError) as exc:
        display.halt(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
