"""
Gift Finder - CLI Entry Point.
Collects a recipient profile, runs the pipeline and renders the top picks with Click and Rich.
"""

import sys
import asyncio
import time
from functools import wraps
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gift_finder import __version__
from gift_finder.config.settings import get_settings, Settings
from gift_finder.models.schemas import (
    MIN_DESCRIPTION_LENGTH,
    EventKind,
    GiftRecommendations,
    PipelineEvent,
    PipelineStatus,
    QuerySource,
    RecipientCategory,
    RecipientProfile,
    ScoringTier,
)
from gift_finder.pipeline.orchestrator import GiftFinderPipeline
from gift_finder.utils.formatters import format_recommendations_json, medal_for
from gift_finder.utils.logger import setup_logging

# Initialize Rich Console
console = Console()

TROUBLESHOOTING_HINT = "Check your environment variables and internet connection"

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool, settings: Optional[Settings] = None):
    """Configure logging based on verbosity."""
    level = "DEBUG" if verbose else "WARNING"
    json_format = settings.log_json if settings is not None else False
    setup_logging(level=level, json_format=json_format)


def validate_description(ctx, param, value: str) -> str:
    """Click callback enforcing the minimum description length."""
    value = (value or "").strip()
    if len(value) < MIN_DESCRIPTION_LENGTH:
        raise click.BadParameter(
            f"Please provide at least {MIN_DESCRIPTION_LENGTH} characters"
        )
    return value


def render_event(event: PipelineEvent) -> None:
    """Print one pipeline status event."""
    if event.kind == EventKind.QUERIES_READY:
        queries = event.data.get("queries", [])
        style = "yellow" if event.data.get("source") == QuerySource.FALLBACK.value else "cyan"
        console.print(f"[{style}]{event.message}:[/{style}] {', '.join(queries)}")
    elif event.kind == EventKind.SESSION_LIVE_VIEW:
        live_view = event.data.get("live_view_url")
        line = f"[dim]{event.message}"
        if live_view:
            line += f" - watch live: {live_view}"
        console.print(line + "[/dim]")
    elif event.kind == EventKind.SESSION_STATE:
        if event.data.get("state") == "failed":
            console.print(f"[red]✗ {event.message}[/red]")
    elif event.kind == EventKind.NO_PRODUCTS:
        console.print(f"[yellow]{event.message}[/yellow]")
    elif event.kind != EventKind.COMPLETE:
        console.print(f"[cyan]{event.message}[/cyan]")


def render_recommendations(result: GiftRecommendations) -> None:
    """Print the top picks as panels, one per product."""
    if result.status == PipelineStatus.NO_PRODUCTS:
        console.print(Panel.fit(
            "[yellow]No products were found for these searches.[/yellow]",
            title="No Gift Ideas",
        ))
        return

    console.print(f"\n[bold]Top {len(result.top_products)} gift ideas for your {result.profile.category.value}[/bold]\n")
    for rank, product in enumerate(result.top_products, 1):
        body = (
            f"[bold]{product.title}[/bold]\n"
            f"Price: [green]{product.price}[/green]   Rating: {product.rating}\n"
            f"Score: [magenta]{product.ai_score}/10[/magenta]\n"
            f"[italic]{product.ai_reason}[/italic]\n"
            f"[blue]{product.url}[/blue]"
        )
        console.print(Panel(body, title=f"{medal_for(rank)} #{rank}", title_align="left"))

    if result.scoring.tier == ScoringTier.UNIFORM_FALLBACK:
        console.print("[yellow]Scoring failed; products are shown with a neutral score.[/yellow]")


async def run_pipeline(
    profile: RecipientProfile,
    settings: Settings,
    on_event=None,
) -> GiftRecommendations:
    """Run the pipeline once with a fresh Claude client."""
    async with GiftFinderPipeline(settings=settings, event_callback=on_event) as pipeline:
        return await pipeline.run(profile)

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version=__version__)
def cli():
    """Gift Finder"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.option(
    '--recipient',
    type=click.Choice([c.value for c in RecipientCategory], case_sensitive=False),
    prompt='Who are you buying a gift for?',
    help='Recipient category',
)
@click.option(
    '--description',
    prompt='Tell us a bit about them (interests, hobbies, age, etc.)',
    callback=validate_description,
    help='Free-text description of the recipient',
)
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def find(recipient: str, description: str, as_json: bool, verbose: bool):
    """
    Find the best gifts for a recipient.
    """
    start_time = time.time()

    try:
        settings = get_settings()
        setup_logger(verbose, settings)
        profile = RecipientProfile(category=recipient, description=description)

        if not as_json:
            console.print(Panel.fit(
                f"[bold blue]Gift Finder[/bold blue]\n"
                f"Recipient: [cyan]{profile.category.value}[/cyan]\n"
                f"Site: [cyan]{settings.target_site_url}[/cyan]"
            ))

        result = await run_pipeline(
            profile,
            settings,
            on_event=None if as_json else render_event,
        )

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        console.print(f"[yellow]{TROUBLESHOOTING_HINT}[/yellow]")
        if verbose:
            console.print_exception()
        sys.exit(1)

    if as_json:
        click.echo(format_recommendations_json(result))
        return

    render_recommendations(result)

    duration = time.time() - start_time
    failed = len(result.failed_sessions)
    summary = f"[dim]Found {result.total_products} products in {duration:.2f}s"
    if failed:
        summary += f" ({failed} search session{'s' if failed != 1 else ''} failed)"
    console.print(summary + "[/dim]")


@cli.command()
def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")

        key = settings.anthropic_api_key.get_secret_value()
        status = "[green]Pass[/green]" if key.startswith("sk-") else "[red]Fail[/red]"
        table.add_row("Anthropic API Key", status, f"configured ({len(key)} chars)")

        table.add_row("Model", "[blue]Info[/blue]", settings.claude_model)
        table.add_row("Target Site", "[green]Pass[/green]", settings.target_site_url)

        if settings.browser_cdp_url:
            browser = f"remote ({settings.browser_region})"
        else:
            browser = "local chromium (headless)" if settings.browser_headless else "local chromium"
        table.add_row("Browser", "[blue]Info[/blue]", browser)
        table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

        console.print(table)

        if not key.startswith("sk-"):
            sys.exit(1)

    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        console.print(f"[yellow]{TROUBLESHOOTING_HINT}[/yellow]")
        sys.exit(1)

if __name__ == "__main__":
    cli()
