"""Sentinel CLI."""

import asyncio
import sys

import click
import yaml

from sentinel.app import SentinelApp
from sentinel.config_loader import load_config_with_overrides
from sentinel.constants import CalibrationName, LogLevel


@click.group()
def cli():
    """Sentinel Command Line Interface."""
    pass


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (defaults apply when omitted)",
)
@click.option("--symbol", help="Override traded symbol, e.g. PAXGUSDT")
@click.option("--sim", is_flag=True, help="Use the random-walk feed instead of Binance")
@click.option("--max-ticks", type=int, default=None, help="Stop the sim feed after N ticks")
@click.option(
    "--calibration",
    type=click.Choice([c.value for c in CalibrationName]),
    default=None,
    help="Override regime calibration",
)
@click.option(
    "--log-level",
    type=click.Choice([lvl.value for lvl in LogLevel], case_sensitive=False),
    default=None,
)
def run(config, symbol, sim, max_ticks, calibration, log_level):
    """Stream trades and log derived statistics."""
    try:
        cfg = load_config_with_overrides(
            config,
            symbol=symbol,
            feed_mode="sim" if sim else None,
            calibration=calibration,
            log_level=log_level,
        )
        app = SentinelApp(cfg, max_ticks=max_ticks)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        import traceback

        traceback.print_exc()
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file",
)
def smoke_test(config):
    """Initialize components, push a few sim ticks through the engine, and exit."""
    try:
        cfg = load_config_with_overrides(config, feed_mode="sim")
        app = SentinelApp(cfg)
        asyncio.run(app.initialize())

        for _ in range(5):
            app.process_tick(app.feed.next_tick())

        snapshot = app.engine.last_snapshot
        click.echo(f"Smoke test passed: {app.processed_count} ticks, regime {snapshot.regime.value}")
    except Exception as e:
        click.echo(f"Smoke test failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file",
)
def show_config(config):
    """Print the effective configuration as YAML."""
    cfg = load_config_with_overrides(config)
    click.echo(yaml.safe_dump(cfg.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    cli()

# Alias for __main__.py
main = cli
