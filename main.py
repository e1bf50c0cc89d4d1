#!/usr/bin/env python3
"""
Slot Searcher

Watches constant-product pools and oracles, detects profitable swaps and
submits them as atomic bundles.

Usage:
    python main.py run --markets markets.json                  # Live feed, paper relay
    python main.py run --markets markets.json --replay f.jsonl # Replay a recording
    python main.py config                                      # Show configuration
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from searcher import __version__
from searcher.app import build_pipeline, create_feed
from searcher.config import SearcherConfig, load_config
from searcher.engine.pipeline import Pipeline
from searcher.logger import get_logger, setup_logging
from searcher.markets import load_markets
from searcher.relay.paper import PaperRelay
from searcher.signing import PaperSigner
from searcher.state.state_cache import StateCache

# Initialize
app = typer.Typer(
    name="slot-searcher",
    help="On-chain opportunity detection and bundle execution",
    add_completion=False,
)
console = Console()
logger = None

PAPER_WALLET = "PaperWa11et1111111111111111111111111111111"


def setup(config: SearcherConfig):
    """Initialize logging."""
    global logger
    setup_logging(config)
    logger = get_logger("main")


@app.command()
def run(
    markets: Optional[Path] = typer.Option(None, "--markets", "-m", help="Markets file (JSON)"),
    replay: Optional[Path] = typer.Option(None, "--replay", "-r", help="Replay a JSONL recording instead of the live feed"),
    paper: bool = typer.Option(True, "--paper/--live", help="Paper trading mode"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """
    Start the searcher.

    Paper mode signs with a placeholder signer and submits to a simulated
    relay. Live submission needs an external signer; embed
    searcher.app.build_pipeline with your own BaseSigner for that.
    """
    config = load_config()
    config.development.paper_trading = paper
    if debug:
        config.development.debug_mode = True
        config.monitoring.log_level = "DEBUG"
    setup(config)

    if not paper:
        console.print(
            "[red]Live trading needs an external signer.[/red]\n"
            "[dim]Embed searcher.app.build_pipeline with a BaseSigner implementation.[/dim]"
        )
        raise typer.Exit(1)

    markets_path = markets or config.feed.markets_path
    if markets_path is None:
        console.print("[red]No markets file: pass --markets or set MARKETS_PATH[/red]")
        raise typer.Exit(1)

    try:
        universe = load_markets(markets_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading markets: {e}[/red]")
        raise typer.Exit(1)

    wallet = config.wallet.wallet_pubkey or PAPER_WALLET
    cache = StateCache(reference_mint=config.engine.reference_mint)
    pipeline = build_pipeline(
        config=config,
        markets=universe,
        signer=PaperSigner(wallet),
        relay=PaperRelay(config.relay),
        feed=None if replay is None else create_feed(config, cache, replay_path=replay),
        cache=cache,
        stop_on_feed_end=replay is not None,
    )

    source = f"replay {replay}" if replay else config.feed.rpc_ws_url
    console.print(Panel.fit(
        "[bold green]⚡ Slot Searcher[/bold green]\n\n"
        f"Mode: [yellow]Paper Trading[/yellow]\n"
        f"Feed: [cyan]{source}[/cyan]\n"
        f"Pools: [cyan]{len(universe.pools)}[/cyan]  Detectors: [cyan]{len(pipeline.engine.detectors)}[/cyan]\n"
        f"Min Profit: [cyan]{config.risk.min_profit_threshold:,} lamports[/cyan]\n"
        f"Policy: [cyan]{config.submission.scheduling_policy}[/cyan]",
        title="Configuration",
        border_style="green",
    ))

    try:
        asyncio.run(_run_pipeline(pipeline))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if debug:
            raise
        raise typer.Exit(1)


async def _run_pipeline(pipeline: Pipeline) -> None:
    loop = asyncio.get_running_loop()

    def request_stop():
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        asyncio.ensure_future(pipeline.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            # Not available on Windows event loops
            pass

    await pipeline.start()
    await pipeline.stop()


@app.command()
def config():
    """Show current configuration."""
    cfg = load_config()
    setup(cfg)

    for name, section in cfg.sections().items():
        table = Table(title=f"⚙️ {name.title()}", box=box.ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        for field_name, value in section.model_dump().items():
            if field_name.endswith("_token") and value:
                value = "********"
            table.add_row(field_name, str(value) if value not in (None, "") else "[dim]-[/dim]")

        console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(Panel.fit(
        f"[bold]Slot Searcher[/bold]\n"
        f"Version: {__version__}\n"
        f"Python: {sys.version.split()[0]}",
        border_style="blue",
    ))


if __name__ == "__main__":
    app()
