"""
PSNL agent command line entry point.

Commands: run (run the scheduler in the foreground) and check (validate the
config file and list the triggers it would register).
"""
import asyncio
import logging
import signal
import sys

import click

from psnl_agent import __version__
from psnl_agent.config import load_config, resolve_config_path
from psnl_agent.errors import ConfigLoadError
from psnl_agent.log import setup_logging


@click.group(invoke_without_command=True)
@click.option("--config", "-c", default="", help="Config file path (default: $PSNL_CONFIG or config.json)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config, verbose):
    """PSNL - Proxmox Scheduled Network Limiter."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = resolve_config_path(config)
    ctx.obj["verbose"] = verbose

    setup_logging(verbose)

    if ctx.invoked_subcommand is None:
        click.echo(f"PSNL Agent v{__version__}")
        click.echo(f"Config: {ctx.obj['config_path']}")
        click.echo("Use --help for available commands")


@cli.command()
@click.pass_context
def run(ctx):
    """Run the scheduler in the foreground."""
    logger = logging.getLogger("psnl_agent")
    config_path = ctx.obj["config_path"]

    try:
        cfg = load_config(config_path)
    except ConfigLoadError as e:
        logger.error(f"Failed to load {config_path}: {e}")
        sys.exit(1)

    from psnl_agent.orchestrator import Orchestrator

    orchestrator = Orchestrator(cfg)
    loop = asyncio.new_event_loop()
    main_task = loop.create_task(orchestrator.start())

    # graceful shutdown: cancel the main task, in-flight updates finish
    def _shutdown(sig):
        logger.info(f"Received {sig.name}, shutting down...")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except ConfigLoadError as e:
        logger.error(f"Invalid schedule: {e}")
        sys.exit(1)
    except Exception:
        logger.exception("Agent crashed")
        sys.exit(1)
    finally:
        loop.close()


@cli.command()
@click.pass_context
def check(ctx):
    """Validate the config file and list the triggers it defines."""
    config_path = ctx.obj["config_path"]
    try:
        cfg = load_config(config_path)
    except ConfigLoadError as e:
        click.echo(f"❌ Config error: {e}", err=True)
        sys.exit(1)

    guests = cfg.guests()
    click.echo(f"✅ Config OK: {config_path}")
    click.echo(f"   Timezone: {cfg.timezone}")
    click.echo(f"   Servers: {len(cfg.servers)}")
    click.echo(f"   Guests: {len(guests)}")
    click.echo(f"   Apply on start: {'enabled' if cfg.apply_on_start else 'disabled'}")
    for server in cfg.servers:
        click.echo(f"   {server.url}")
        for node in server.nodes:
            for guest in node.guests:
                for entry in guest.schedule:
                    for iface, rate in entry.rates.items():
                        limit = f"{rate} MB/s" if rate else "unlimited"
                        click.echo(f"     {entry.time} {guest.path} {iface}={limit}")


def main():
    """CLI entry function."""
    cli()


if __name__ == "__main__":
    main()
