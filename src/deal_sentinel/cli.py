"""Click-based CLI for deal-sentinel.

Thin wrapper around library modules. Every operation delegates to the
storage, engine, or API packages.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from deal_sentinel.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from deal_sentinel.storage import create_store

    return await create_store(config.storage)


def _policy_from_options(below: float | None, discount: int | None, any_sale: bool):
    """Build at most one alert policy from mutually exclusive options."""
    from deal_sentinel.core import AnySaleStart, DiscountAtLeast, PriceBelow

    chosen = [opt for opt in (below is not None, discount is not None, any_sale) if opt]
    if len(chosen) > 1:
        raise click.UsageError("Use only one of --below, --discount, --any-sale")
    try:
        if below is not None:
            return PriceBelow(amount=below)
        if discount is not None:
            return DiscountAtLeast(percent=discount)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    if any_sale:
        return AnySaleStart()
    return None


def _describe_policy(policy) -> str:
    if policy is None:
        return "-"
    if policy.kind == "price_below":
        return f"price <= {policy.amount:,.0f}"
    if policy.kind == "discount_at_least":
        return f"discount >= {policy.percent}%"
    return "any sale"


policy_options = [
    click.option("--below", type=float, default=None, help="Alert at or below this price."),
    click.option("--discount", type=int, default=None, help="Alert at this discount % or more."),
    click.option("--any-sale", is_flag=True, default=False, help="Alert whenever a sale starts."),
]


def _with_policy_options(func):
    for option in reversed(policy_options):
        func = option(func)
    return func


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="DEAL_SENTINEL_CONFIG",
    default=None,
    help="Path to deal-sentinel.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="deal-sentinel")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """deal-sentinel: storefront price monitoring and deal alerts."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# items
# ---------------------------------------------------------------------------


@cli.group()
def items() -> None:
    """Manage the watch list."""


@items.command("add")
@click.argument("external_id")
@click.option("--name", "-n", type=str, default=None, help="Display name.")
@_with_policy_options
@click.pass_context
def items_add(
    ctx: click.Context,
    external_id: str,
    name: str | None,
    below: float | None,
    discount: int | None,
    any_sale: bool,
) -> None:
    """Track a storefront app id."""
    config = _load_config(ctx)
    policy = _policy_from_options(below, discount, any_sale)
    if not external_id.strip().isdigit():
        raise click.BadParameter("must be a numeric app id", param_hint="EXTERNAL_ID")

    async def _run():
        store = await _create_store_async(config)
        try:
            if await store.get_item_by_external_id(external_id) is not None:
                console.print(f"[yellow]App {external_id} is already tracked.[/yellow]")
                raise SystemExit(1)
            item = await store.add_item(
                external_id, name or f"app {external_id}", policy=policy
            )
            console.print(
                f"[green]✓[/green] Tracking #{item.id} {item.label} "
                f"({_describe_policy(item.policy)})"
            )
        finally:
            await store.close()

    _run_async(_run())


@items.command("list")
@click.option("--enabled-only", is_flag=True, default=False)
@click.pass_context
def items_list(ctx: click.Context, enabled_only: bool) -> None:
    """Show tracked items with their latest price."""
    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            tracked = await store.list_items(enabled_only=enabled_only)
            table = Table(title=f"Tracked Items ({len(tracked)})")
            table.add_column("#", justify="right")
            table.add_column("App", style="bold")
            table.add_column("Name")
            table.add_column("Policy")
            table.add_column("Price", justify="right")
            table.add_column("Low", justify="right")
            table.add_column("State")
            for item in tracked:
                snap = await store.latest_snapshot(item.id)
                price = f"{snap.current_price:,.0f}" if snap else "-"
                low = f"{snap.historical_low:,.0f}" if snap else "-"
                if snap is not None and snap.effective_discount:
                    price += f" (-{snap.effective_discount}%)"
                state = str(snap.source) if snap else "new"
                if not item.enabled:
                    state = "disabled"
                table.add_row(
                    str(item.id),
                    item.external_id,
                    item.display_name,
                    _describe_policy(item.policy) if item.alert_enabled else "muted",
                    price,
                    low,
                    state,
                )
            console.print(table)
        finally:
            await store.close()

    _run_async(_run())


@items.command("policy")
@click.argument("item_id", type=int)
@_with_policy_options
@click.option("--clear", is_flag=True, default=False, help="Remove the policy.")
@click.option("--alerts/--no-alerts", default=None, help="Mute or unmute alerts.")
@click.pass_context
def items_policy(
    ctx: click.Context,
    item_id: int,
    below: float | None,
    discount: int | None,
    any_sale: bool,
    clear: bool,
    alerts: bool | None,
) -> None:
    """Set or clear an item's alert policy."""
    config = _load_config(ctx)
    policy = _policy_from_options(below, discount, any_sale)
    if policy is None and not clear and alerts is None:
        raise click.UsageError("Give a policy option, --clear, or --alerts/--no-alerts")

    async def _run():
        store = await _create_store_async(config)
        try:
            item = await store.get_item(item_id)
            if item is None:
                console.print(f"[red]Item {item_id} not found.[/red]")
                raise SystemExit(1)
            new_policy = None if clear else (policy or item.policy)
            item = await store.set_policy(item_id, new_policy, alerts)
            console.print(
                f"[green]✓[/green] {item.label}: {_describe_policy(item.policy)}"
                + ("" if item.alert_enabled else " (muted)")
            )
        finally:
            await store.close()

    _run_async(_run())


def _set_enabled(ctx: click.Context, item_id: int, enabled: bool) -> None:
    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            if await store.get_item(item_id) is None:
                console.print(f"[red]Item {item_id} not found.[/red]")
                raise SystemExit(1)
            item = await store.set_item_enabled(item_id, enabled)
            word = "enabled" if enabled else "disabled"
            console.print(f"[green]✓[/green] {item.label} {word}")
        finally:
            await store.close()

    _run_async(_run())


@items.command("enable")
@click.argument("item_id", type=int)
@click.pass_context
def items_enable(ctx: click.Context, item_id: int) -> None:
    """Include an item in sweeps."""
    _set_enabled(ctx, item_id, True)


@items.command("disable")
@click.argument("item_id", type=int)
@click.pass_context
def items_disable(ctx: click.Context, item_id: int) -> None:
    """Exclude an item from sweeps."""
    _set_enabled(ctx, item_id, False)


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--item",
    "-i",
    "item_ids",
    type=int,
    multiple=True,
    help="Sweep only these item ids. Default: all enabled items.",
)
@click.pass_context
def sweep(ctx: click.Context, item_ids: tuple[int, ...]) -> None:
    """Run one price sweep locally."""
    config = _load_config(ctx)

    async def _run():
        from deal_sentinel.cache import CacheStore
        from deal_sentinel.engine import BatchRunner, ProgressPoller
        from deal_sentinel.notify import create_notifier
        from deal_sentinel.pricing import SteamStorePriceFetcher

        store = await _create_store_async(config)
        cache = CacheStore(default_ttl=config.cache.default_ttl_seconds)
        notifier = create_notifier(config.notifications)
        try:
            if item_ids:
                selected = [await store.get_item(i) for i in item_ids]
                selected = [i for i in selected if i is not None]
            else:
                selected = await store.list_enabled_items()
            if not selected:
                console.print("[yellow]Nothing to sweep. Add items with 'items add'.[/yellow]")
                raise SystemExit(1)

            async with SteamStorePriceFetcher(config.store_api) as fetcher:
                runner = BatchRunner(
                    store, fetcher, cache, notifier=notifier, config=config.monitoring
                )
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TextColumn("{task.completed}/{task.total}"),
                    console=console,
                ) as progress:
                    task = progress.add_task("Sweeping...", total=len(selected))

                    def on_update(state):
                        progress.update(
                            task,
                            completed=state.completed_count,
                            description=state.current_item_label or "Sweeping...",
                        )

                    runner.start_sweep(selected)
                    poller = ProgressPoller(
                        runner.get_progress,
                        interval=config.monitoring.poll_interval_seconds,
                        on_update=on_update,
                    )
                    poller.start()
                    summary = await runner.wait()
                    await poller.wait()

            console.print(
                f"[green]✓[/green] Swept {summary.completed}/{summary.total} items, "
                f"{summary.alerts} alerts"
                + (f" ({summary.failed} failed)" if summary.failed else "")
                + f" in {summary.duration_seconds:.1f}s"
            )
        finally:
            await notifier.close()
            await cache.close()
            await store.close()

    _run_async(_run())


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--url", type=str, default=None, help="Server base URL.")
@click.option("--start", is_flag=True, default=False, help="Start a sweep first.")
@click.pass_context
def watch(ctx: click.Context, url: str | None, start: bool) -> None:
    """Follow a running server's sweep progress."""
    config = _load_config(ctx)
    base_url = url or f"http://{config.api.host}:{config.api.port}"

    async def _run():
        import httpx

        from deal_sentinel.engine import ProgressPoller, http_progress_source

        async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
            try:
                (await client.get("/api/health")).raise_for_status()
            except httpx.HTTPError as e:
                console.print(f"[red]Cannot reach {base_url}: {e}[/red]")
                raise SystemExit(1)

            if start:
                body = (await client.post("/api/monitoring/sweep")).json()
                if body.get("success"):
                    console.print(f"Started sweep [bold]{body['run_id']}[/bold]")
                else:
                    console.print(f"[yellow]Not started: {body.get('error')}[/yellow]")

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=console,
            ) as progress:
                task = progress.add_task("Waiting...", total=None)

                def on_update(state):
                    progress.update(
                        task,
                        total=state.total_count or None,
                        completed=state.completed_count,
                        description=state.current_item_label or "Waiting...",
                    )

                poller = ProgressPoller(
                    http_progress_source(client),
                    interval=config.monitoring.poll_interval_seconds,
                    on_update=on_update,
                )
                poller.start()
                final = await poller.wait()

        if final is None or final.run_id is None:
            console.print("No sweep has run yet.")
            return
        word = "cancelled" if final.cancelled else "finished"
        console.print(
            f"Sweep {final.run_id} {word}: {final.completed_count}/{final.total_count} "
            f"items, {final.failed_count} failed"
        )

    _run_async(_run())


# ---------------------------------------------------------------------------
# alerts
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--item", "-i", "item_id", type=int, default=None, help="Filter by item id.")
@click.option(
    "--kind",
    type=click.Choice(
        ["released", "free_game", "new_low", "threshold_met", "sale_start"],
        case_sensitive=False,
    ),
    default=None,
)
@click.option("--limit", "-n", type=int, default=20, help="Max alerts to show.")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.pass_context
def alerts(
    ctx: click.Context,
    item_id: int | None,
    kind: str | None,
    limit: int,
    fmt: str,
) -> None:
    """Show recent alerts."""
    config = _load_config(ctx)

    async def _run():
        from deal_sentinel.core import AlertKind

        store = await _create_store_async(config)
        try:
            events = await store.list_alerts(
                item_id=item_id,
                kind=AlertKind(kind.lower()) if kind else None,
                limit=limit,
            )
            if fmt == "json":
                click.echo(
                    json.dumps([e.model_dump(mode="json") for e in events], indent=2)
                )
                return
            names = {i.id: i.display_name for i in await store.list_items()}
            table = Table(title="Recent Alerts")
            table.add_column("When")
            table.add_column("Item", style="bold")
            table.add_column("Kind")
            table.add_column("Price", justify="right")
            table.add_column("Discount", justify="right")
            for e in events:
                table.add_row(
                    e.created_at.strftime("%Y-%m-%d %H:%M"),
                    names.get(e.item_id, str(e.item_id)),
                    str(e.kind),
                    f"{e.trigger_price:,.0f}",
                    f"{e.discount_percent}%" if e.discount_percent else "-",
                )
            console.print(table)
        finally:
            await store.close()

    _run_async(_run())


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address.")
@click.option("--port", "-p", type=int, default=None, help="Port number.")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server and the sweep scheduler."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    if ctx.obj.get("config_path"):
        # The app factory runs in uvicorn and reads its config from the env
        os.environ["DEAL_SENTINEL_CONFIG"] = ctx.obj["config_path"]

    console.print(f"Starting deal-sentinel API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "deal_sentinel.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show watch-list and storage status."""
    async def _run():
        config = _load_config(ctx)
        store = await _create_store_async(config)
        try:
            stats = await store.get_statistics()

            table = Table(title="deal-sentinel Status")
            table.add_column("Metric", style="bold")
            table.add_column("Value", justify="right")

            table.add_row("Database path", config.storage.sqlite_path)
            table.add_row(
                "Sweep interval",
                f"{config.monitoring.interval_hours:g} h"
                if config.monitoring.interval_hours
                else "disabled",
            )
            table.add_row(
                "Notifications",
                "discord" if config.notifications.discord_active else "off",
            )
            table.add_section()
            table.add_row("Tracked items", str(stats["total_items"]))
            table.add_row("Enabled items", str(stats["enabled_items"]))
            table.add_row("Price snapshots", str(stats["total_snapshots"]))
            table.add_row("Alerts", str(stats["total_alerts"]))

            console.print(table)
        finally:
            await store.close()

    _run_async(_run())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
