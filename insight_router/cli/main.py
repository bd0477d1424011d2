"""
CLI interface for Insight Router.

Provides command-line access to the local store: initialize it, classify a
transaction through the router, teach it a category and inspect the learned
patterns and quota tiers.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from insight_router.config.loader import RouterConfig, load_router_config
from insight_router.core.resolution import InsightResponse, ProviderUnavailable, QuotaDenial
from insight_router.core.routing import InsightQuery
from insight_router.core.session import RouterSession, create_repository
from insight_router.sdk.openai_client import OpenAIInsightProvider
from insight_router.storage.repository import initialize_schema
from insight_router.utils.logging import configure_logging

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

CLI_USER_ID = "cli"


def _config(ctx: typer.Context) -> RouterConfig:
    return ctx.obj["config"]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML router config"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write full logs to this file"
    ),
):
    """Insight Router CLI."""
    configure_logging(log_file=log_file, verbose=verbose)
    try:
        config = load_router_config(str(config_path)) if config_path else RouterConfig()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    ctx.obj = {"config": config}

    if ctx.invoked_subcommand is None:
        console.print("Insight Router - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Insight Router database."""
    db_path = _config(ctx).storage.db_path
    try:
        initialize_schema(db_path)
        console.print(f"[green]✓[/] Database initialized at {db_path}")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    ctx: typer.Context,
    cloud: bool = typer.Option(
        False,
        "--cloud",
        help="Include the OpenAI provider in the health check"
    ),
):
    """Show what the local store holds and whether the router is healthy."""
    config = _config(ctx)
    db_path = config.storage.db_path
    if not Path(db_path).exists():
        console.print(f"[yellow]![/] No database at {db_path}. Run `insight-router init` first.")
        sys.exit(EXIT_CODE_OK)

    try:
        repository = create_repository(db_path)
        repository.initialize()
        rules = repository.load_rules()
        entries = repository.load_cache_entries()
    except Exception as e:
        console.print(f"[red]Error reading database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Insight Router is initialized ({db_path})")
    console.print(f"Learned patterns: {len(rules)}")
    console.print(f"Cached insights: {len(entries)}")
    console.print(f"Provider model: {config.provider.model}")

    try:
        provider = OpenAIInsightProvider(config.provider.model) if cloud else None
    except Exception as e:
        console.print(f"[red]Error creating provider:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    engine = RouterSession(config, provider, repository).engine
    health = engine.health()
    performance = engine.performance()
    colour = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}[health.status.value]
    console.print(f"Health: [{colour}]{health.status.value}[/]")
    for issue in health.issues:
        console.print(f"  [yellow]![/] {issue}")
    console.print(f"Circuit breaker: {performance.circuit_state.value}")


@app.command()
def classify(
    ctx: typer.Context,
    vendor: str = typer.Argument(..., help="Vendor / merchant description"),
    amount: float = typer.Argument(..., help="Transaction amount"),
    question: str = typer.Option(
        "",
        "--question",
        "-q",
        help="Optional question about the transaction"
    ),
    recurring: bool = typer.Option(
        False,
        "--recurring",
        help="Mark the transaction as recurring"
    ),
    cloud: bool = typer.Option(
        False,
        "--cloud",
        help="Allow the OpenAI provider for low-confidence answers"
    ),
):
    """Route a transaction through cache, local classifier and provider."""
    config = _config(ctx)
    try:
        provider = OpenAIInsightProvider(config.provider.model) if cloud else None
        query = InsightQuery(
            user_id=CLI_USER_ID,
            vendor=vendor,
            amount=amount,
            query=question,
            context={"recurring": True} if recurring else {},
        )
        result = asyncio.run(_resolve(config, provider, query))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if isinstance(result, InsightResponse):
        _display_response(result)
        sys.exit(EXIT_CODE_OK)
    if isinstance(result, QuotaDenial):
        console.print(f"[yellow]Usage limit exceeded:[/] {result.reason.value}")
        if result.local_answer is not None:
            _display_response(result.local_answer)
        sys.exit(EXIT_CODE_FAIL)
    if isinstance(result, ProviderUnavailable):
        console.print(f"[yellow]{result.message}[/]")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def feedback(
    ctx: typer.Context,
    vendor: str = typer.Argument(..., help="Vendor / merchant description"),
    category: str = typer.Argument(..., help="Correct spending category"),
):
    """Confirm or correct the category for a vendor."""
    config = _config(ctx)
    try:
        rule = asyncio.run(_learn(config, vendor, category))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] {rule.signature} → {rule.category} "
        f"(confidence {rule.confidence:.2f}, {rule.sample_count} samples)"
    )


@app.command()
def patterns(ctx: typer.Context):
    """List learned vendor patterns."""
    db_path = _config(ctx).storage.db_path
    try:
        repository = create_repository(db_path)
        repository.initialize()
        rules = repository.load_rules()
    except Exception as e:
        console.print(f"[red]Error reading patterns:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not rules:
        console.print("[dim]No learned patterns yet. Use `insight-router feedback` to add one.[/]")
        return

    table = Table(title="Learned Patterns")
    table.add_column("Signature")
    table.add_column("Category")
    table.add_column("Confidence", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Updated")
    for rule in rules:
        table.add_row(
            rule.signature,
            rule.category,
            f"{rule.confidence:.2f}",
            str(rule.sample_count),
            rule.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def tiers(ctx: typer.Context):
    """Show subscription tiers and their quota limits."""
    quota = _config(ctx).quota
    table = Table(title=f"Subscription Tiers ({quota.period.value})")
    table.add_column("Tier")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Conversations", justify="right")
    for name, limits in quota.tiers.items():
        label = f"{name} (default)" if name == quota.default_tier else name
        table.add_row(
            label,
            f"{limits.token_limit:,}",
            f"{limits.request_limit:,}",
            f"{limits.conversation_limit:,}",
        )
    console.print(table)
    console.print(
        f"Rate limit: {quota.rate_limit.burst} requests per "
        f"{quota.rate_limit.window_seconds:g}s"
    )


async def _resolve(config: RouterConfig, provider, query: InsightQuery):
    session = RouterSession.from_config(config, provider)
    await session.start(query.user_id)
    try:
        return await session.resolve(query)
    finally:
        await session.close()


async def _learn(config: RouterConfig, vendor: str, category: str):
    session = RouterSession.from_config(config)
    await session.start()
    try:
        return await session.engine.learn(vendor, category)
    finally:
        await session.close()


def _display_response(response: InsightResponse) -> None:
    """Display an insight in a compact table."""
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Category", response.category)
    table.add_row("Confidence", f"{response.confidence:.2f}")
    table.add_row("Source", response.source.value + (" (degraded)" if response.degraded else ""))
    table.add_row("Signature", response.signature or "-")
    table.add_row("Insight", response.response)
    console.print(table)


if __name__ == "__main__":
    app()
