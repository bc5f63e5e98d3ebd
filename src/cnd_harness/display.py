# display.py
# All terminal output for the cnd test harness.
#
# This module owns presentation entirely. No other module formats strings
# for the terminal — they call named functions here.
#
# Colour language:
#   cyan    — harness / environment events
#   blue    — node processes and binaries
#   yellow  — waiting, polling, post-conditions
#   green   — success / confirmed
#   red     — failures, halts
#   magenta — scenario steps

import json
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from cnd_harness.models import LedgerConfig, StepRecord

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Binaries
# ---------------------------------------------------------------------------


def binary_override(name: str, path: Path) -> None:
    console.print(_label("BINARY", "blue"), f"[blue] Overriding {name} with[/blue] [white]{path}[/white]")


def binary_cached(name: str, path: Path) -> None:
    console.print(_label("BINARY", "blue"), f"[blue] Using cached {name}[/blue] [dim]{path}[/dim]")


def binary_downloading(name: str, url: str) -> None:
    console.print(_label("BINARY", "blue"), f"[blue] {name} not cached, downloading…[/blue] [dim]{url}[/dim]")


def binary_downloaded(name: str, path: Path) -> None:
    console.print(_label("BINARY", "blue"), f"[bold green] ✓ Download completed[/bold green] [dim]{path}[/dim]")


# ---------------------------------------------------------------------------
# Node processes
# ---------------------------------------------------------------------------


def instance_spawned(name: str, pid: int, log_path: Path) -> None:
    console.print(
        _label("NODE", "blue"),
        f"[blue] {name} spawned[/blue] [white]PID {pid}[/white]  [dim]log: {log_path}[/dim]",
    )


def instance_waiting(name: str, marker: str) -> None:
    console.print(f"  [yellow]↳ Waiting for {name} readiness marker[/yellow] [dim]{marker!r}[/dim]")


def instance_ready(name: str, config: LedgerConfig) -> None:
    console.print(
        f"  [bold green]✓ {name} ready[/bold green]  [dim]{config.rpc_url}[/dim]"
    )


def instance_exited(name: str, code: int | None, signal: int | None) -> None:
    console.print(
        _label("NODE", "blue"),
        f"[dim] {name} exited with code {code} after signal {signal}[/dim]",
    )


def instance_startup_failed(name: str, reason: str) -> None:
    console.print(
        Panel(
            f"[bold red]{name} did not start.[/bold red]\n\n[white]{reason}[/white]",
            title=_label("STARTUP FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def pid_file_written(path: Path, pid: int) -> None:
    console.print(f"  [dim]PID {pid} recorded in {path}[/dim]")


def miner_started(rpc_url: str) -> None:
    console.print(_label("MINER", "blue"), f"[blue] Generating blocks on[/blue] [white]{rpc_url}[/white]")


# ---------------------------------------------------------------------------
# Kill switch
# ---------------------------------------------------------------------------


def kill_signal_sent(pid_file: Path, pid: int) -> None:
    console.print(
        _label("CLEANUP", "cyan"),
        f"[cyan] Found pid file {pid_file}, sending SIGTERM to PID {pid}[/cyan]",
    )


def kill_malformed_pid(pid_file: Path, content: str) -> None:
    console.print(
        _label("CLEANUP", "cyan"),
        f"[yellow] Skipping malformed pid file {pid_file}:[/yellow] [dim]{_mono(content, 40)!r}[/dim]",
    )


def kill_failed(pid_file: Path, reason: str) -> None:
    console.print(
        _label("CLEANUP", "cyan"),
        f"[yellow] Could not terminate process from {pid_file}:[/yellow] [dim]{reason}[/dim]",
    )


def cleanup_failed(reason: str) -> None:
    console.print(_label("CLEANUP", "cyan"), f"[yellow] {reason}[/yellow]")


def locks_removed(locks_dir: Path) -> None:
    console.print(_label("CLEANUP", "cyan"), f"[dim] Removed {locks_dir}[/dim]")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def environment_start(ledgers: list[str]) -> None:
    console.print()
    console.print(Rule(f"[cyan]STARTING LEDGERS — {', '.join(ledgers) or 'none'}[/cyan]", style="cyan"))


def ledgers_ready(configs: dict[str, LedgerConfig]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Ledger", style="bold white", width=10)
    table.add_column("RPC", style="white")
    table.add_column("P2P", justify="right", width=6)
    table.add_column("Data dir", style="dim white")

    for kind, config in configs.items():
        table.add_row(kind, config.rpc_url, str(config.p2p_port), config.data_dir)

    console.print(
        Panel(
            table,
            title=_label("LEDGERS RUNNING", "green"),
            border_style="green",
            padding=(0, 1),
        )
    )


def environment_stop() -> None:
    console.print()
    console.print(Rule("[cyan]TEARDOWN[/cyan]", style="cyan"))


# ---------------------------------------------------------------------------
# Scenario execution
# ---------------------------------------------------------------------------


def swap_created(actor: str, location: str) -> None:
    console.print(_label("SWAP", "magenta"), f"[magenta] {actor} →[/magenta] [white]{location}[/white]")


def scenario_start(total: int) -> None:
    console.print()
    console.print(Rule(f"[magenta]SCENARIO — {total} step(s)[/magenta]", style="magenta"))


def step_start(index: int, total: int, description: str) -> None:
    console.print()
    console.print(
        f"[bold magenta]  STEP [{index + 1}/{total}][/bold magenta]  [white]{description}[/white]"
    )


def step_request(method: str, url: str, body: dict | None) -> None:
    console.print(
        f"  [magenta]Request[/magenta]  [bold white]{method}[/bold white] {url}"
        f"  [dim]{_mono(json.dumps(body), 100) if body else ''}[/dim]"
    )


def step_background(description: str) -> None:
    console.print(f"  [yellow]↳ Started in background:[/yellow] [white]{description}[/white]")


def step_passed(index: int) -> None:
    console.print(f"  [bold green]✓ Step {index + 1} done[/bold green]")


def after_test_start(description: str, timeout: float) -> None:
    console.print(f"  [yellow]↳ Checking[/yellow] [white]{description}[/white] [dim](timeout {timeout}s)[/dim]")


def after_test_passed(description: str) -> None:
    console.print(f"  [bold green]✓ {description}[/bold green]")


def polling(actor: str, location: str) -> None:
    console.print(f"  [yellow]↳ {actor} polling[/yellow] [dim]{location}[/dim]")


def step_failed(index: int, description: str, reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]Step {index + 1} failed: {description}[/bold red]\n\n"
            f"[white]{reason}[/white]",
            title=_label("SCENARIO FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def scenario_summary(records: list[StepRecord]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Actor", width=10)
    table.add_column("Action", width=10)
    table.add_column("Passed", justify="center", width=8)
    table.add_column("Detail", style="dim white")

    for record in records:
        passed = "[bold green]✓[/bold green]" if record.passed else "[bold red]✗[/bold red]"
        action = record.action.value + (" (bg)" if record.background else "")
        table.add_row(str(record.index + 1), record.actor, action, passed, _mono(record.detail, 60))

    console.print(
        Panel(
            table,
            title="[dim]SCENARIO SUMMARY[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
