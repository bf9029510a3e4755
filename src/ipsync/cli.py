"""CLI entry point for ipsync."""

from pathlib import Path

import click

from ipsync import __version__
from ipsync.config import load_config
from ipsync.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Log at DEBUG, including why requests were rejected.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """ipsync - keep a listener in sync with a roaming peer's address."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"], verbose=verbose)


@main.command()
@click.argument("cache_file", type=click.Path(path_type=Path))
@click.argument("action", type=click.Path(path_type=Path))
@click.argument("public_key", type=click.Path(path_type=Path))
@click.argument("listen_address", required=False)
@click.pass_context
def listen(
    ctx: click.Context,
    cache_file: Path,
    action: Path,
    public_key: Path,
    listen_address: str | None,
) -> None:
    """Verify pings and run ACTION when the peer's address changes.

    CACHE_FILE holds the last-known address, ACTION is run with
    --old=<ip> --new=<ip>, PUBLIC_KEY is the reporting peer's key.
    LISTEN_ADDRESS defaults to the configured address (":8090").
    """
    import asyncio

    from ipsync.errors import StartupError
    from ipsync.listener import Listener

    config = ctx.obj["config"]
    address = listen_address or config.listener.listen_address

    async def _listen():
        listener = Listener(
            cache_file=cache_file,
            action_path=action,
            public_key_path=public_key,
            listen_address=address,
            config=config.listener,
        )
        try:
            await listener.start()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)

        click.echo(f"Listening on {address}")
        click.echo("Press Ctrl+C to stop")
        await listener.run_forever()

    try:
        asyncio.run(_listen())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.argument("private_key", type=click.Path(path_type=Path))
@click.argument("listener_url")
@click.option(
    "--interval",
    "-i",
    type=float,
    default=None,
    help="Report every N seconds instead of once.",
)
@click.pass_context
def report(
    ctx: click.Context,
    private_key: Path,
    listener_url: str,
    interval: float | None,
) -> None:
    """Send a signed ping to LISTENER_URL (e.g. http://host:8090/ping)."""
    import asyncio

    from ipsync.auth import Signer
    from ipsync.errors import ReportError, StartupError
    from ipsync.reporter import Reporter

    config = ctx.obj["config"]
    if interval is None:
        interval = config.reporter.interval

    try:
        signer = Signer.from_path(private_key)
    except StartupError as e:
        click.echo(f"Startup error: {e}", err=True)
        raise SystemExit(1)

    async def _report():
        async with Reporter(
            signer,
            listener_url,
            request_timeout=config.reporter.request_timeout,
        ) as reporter:
            if interval:
                await reporter.run(interval)
                return
            try:
                result = await reporter.report_once()
            except ReportError as e:
                click.echo(f"Error: {e}", err=True)
                raise SystemExit(1)
            click.echo(f"Response was {result.status}: {result.body}")
            if not result.ok:
                raise SystemExit(1)

    try:
        asyncio.run(_report())
    except KeyboardInterrupt:
        pass


@main.command()
@click.argument("private_out", type=click.Path(path_type=Path))
@click.argument("public_out", type=click.Path(path_type=Path))
@click.option(
    "--curve",
    type=click.Choice(["secp384r1", "secp521r1"]),
    default="secp384r1",
    show_default=True,
    help="Elliptic curve for the key pair.",
)
def keygen(private_out: Path, public_out: Path, curve: str) -> None:
    """Generate a key pair: PRIVATE_OUT for the reporter, PUBLIC_OUT for the listener."""
    from ipsync.keys import write_key_pair

    try:
        write_key_pair(private_out, public_out, curve=curve)
    except FileExistsError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Private key written to {private_out}")
    click.echo(f"Public key written to {public_out}")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"ipsync version {__version__}")
