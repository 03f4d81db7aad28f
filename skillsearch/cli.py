"""skillsearch CLI — search, browse and sync skills from git registries."""

import json
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from skillsearch import __version__
from skillsearch.config import Settings
from skillsearch.errors import ConfigurationError, NotFoundError, SkillSearchError

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(console=err_console, show_path=False, show_time=verbose)
    handler.setFormatter(logging.Formatter("%(message)s"))
    log = logging.getLogger("skillsearch")
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/] {escape(message)}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--data-dir",
    envvar="SKILLSEARCH_HOME",
    default=None,
    help="Data directory (default: ~/.local/share/skill-search)",
)
@click.option("--config", "config_path", default=None, help="Registry table (YAML)")
@click.option("--verbose", "-v", is_flag=True, help="Show progress and debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: str | None, config_path: str | None, verbose: bool):
    """skillsearch — find agent skills across git-hosted registries.

    Run 'skillsearch sync' once to mirror the registries, then search
    offline with 'skillsearch search'.
    """
    _configure_logging(verbose)
    try:
        ctx.obj = Settings.load(data_dir=data_dir, config_path=config_path)
    except ConfigurationError as e:
        _fail(str(e))


class _Session:
    """Store, index and query engine for one command invocation."""

    def __init__(self, settings: Settings):
        from skillsearch.index.engine import IndexEngine
        from skillsearch.quality import QualityScores
        from skillsearch.query import QueryEngine
        from skillsearch.registry.store import SkillStore

        self.settings = settings
        self.store = SkillStore(settings.db_path)
        self.index = IndexEngine.open(settings.index_dir, self.store)
        self.query = QueryEngine(self.store, self.index, QualityScores.load(settings.quality_path))

    def require_skills(self) -> None:
        if self.store.count() == 0:
            err_console.print("[yellow]No skills indexed yet. Run 'skillsearch sync' first.[/]")


def _print_results(results, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
        return

    for i, result in enumerate(results, start=1):
        skill = result.skill
        badge = "[green]✓[/]" if skill.trusted else "[yellow]⚠[/]"
        line = f"{i}. {badge} [cyan]{escape(skill.slug)}[/] ★{skill.star_count} ({escape(skill.registry_id)})"
        if skill.description:
            line += f" - {escape(skill.description)}"
        console.print(line, soft_wrap=True)
        console.print(f"   {escape(result.url)}", soft_wrap=True, style="dim")


# ── Search ───────────────────────────────────────────────────────────


@main.command()
@click.argument("query")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.option("--registry", "-r", default=None, help="Only search this registry")
@click.option("--trusted", is_flag=True, help="Only official registries")
@click.option("--limit", "-n", default=10, show_default=True, help="Maximum results")
@click.option("--min-score", default=0, help="Minimum curated quality score")
@click.pass_obj
def search(
    settings: Settings,
    query: str,
    as_json: bool,
    registry: str | None,
    trusted: bool,
    limit: int,
    min_score: int,
):
    """Full-text search over skill names, descriptions and metadata."""
    session = _Session(settings)
    session.require_skills()
    try:
        results = session.query.search(
            query, registry=registry, trusted_only=trusted, limit=limit, min_score=min_score
        )
    except NotFoundError as e:
        _fail(str(e))

    if not results and not as_json:
        console.print(f"[yellow]No skills match {escape(query)!r}.[/]")
        return
    _print_results(results, as_json)


# ── Top ──────────────────────────────────────────────────────────────


@main.command()
@click.option("--trusted", is_flag=True, help="Only official registries")
@click.option("--limit", "-n", default=20, show_default=True, help="Maximum results")
@click.option("--min-score", default=0, help="Minimum curated quality score")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def top(settings: Settings, trusted: bool, limit: int, min_score: int, as_json: bool):
    """The most starred skills."""
    session = _Session(settings)
    session.require_skills()
    results = session.query.top(trusted_only=trusted, limit=limit, min_score=min_score)
    if not results and not as_json:
        console.print("[yellow]No skills found.[/]")
        return
    _print_results(results, as_json)


# ── Show / URL ───────────────────────────────────────────────────────


@main.command()
@click.argument("slug")
@click.option("--registry", "-r", default=None, help="Registry holding the skill")
@click.pass_obj
def show(settings: Settings, slug: str, registry: str | None):
    """Show a skill's metadata and raw SKILL.md."""
    session = _Session(settings)
    try:
        skill = session.query.resolve(slug, registry)
        url = session.query.url(skill.registry_id, skill.slug)
    except NotFoundError as e:
        _fail(str(e))

    trust = "[green]trusted[/]" if skill.trusted else "[yellow]untrusted[/]"
    lines = [
        f"[bold]{escape(skill.name or skill.slug)}[/] ({escape(skill.registry_id)}/{escape(skill.slug)}) {trust}",
        f"Stars: {skill.star_count}",
    ]
    if skill.version:
        lines.append(f"Version: {escape(skill.version)}")
    if skill.compatibility:
        lines.append(f"Compatibility: {escape(skill.compatibility)}")
    quality = session.query.quality_score(skill)
    if quality is not None:
        lines.append(f"Quality: {quality}")
    lines.append(f"URL: {escape(url)}")
    if skill.description:
        lines.append("")
        lines.append(escape(skill.description))

    console.print(Panel("\n".join(lines), title=escape(skill.slug)))
    click.echo(skill.content)


@main.command()
@click.argument("slug")
@click.option("--registry", "-r", default=None, help="Registry holding the skill")
@click.pass_obj
def url(settings: Settings, slug: str, registry: str | None):
    """Print the web URL of a skill's directory."""
    session = _Session(settings)
    try:
        skill = session.query.resolve(slug, registry)
        click.echo(session.query.url(skill.registry_id, skill.slug))
    except NotFoundError as e:
        _fail(str(e))


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--force", is_flag=True, help="Re-clone mirrors and re-extract every skill")
@click.option("--no-stars", is_flag=True, help="Skip star count enrichment")
@click.pass_obj
def sync(settings: Settings, force: bool, no_stars: bool):
    """Mirror every configured registry and update the search index."""
    from skillsearch.sync.manager import RegistrySyncManager
    from skillsearch.sync.popularity import PopularityEnricher

    session = _Session(settings)
    enricher = None
    if not no_stars:
        enricher = PopularityEnricher(
            settings.registries_by_id,
            session.store,
            ttl=settings.stars_ttl,
            timeout=settings.http_timeout,
        )

    manager = RegistrySyncManager(
        session.store,
        session.index,
        settings.mirrors_dir,
        max_workers=settings.max_workers,
        git_timeout=settings.git_timeout,
        git_retries=settings.git_retries,
        retry_backoff=settings.retry_backoff,
        enricher=enricher,
    )

    console.print(f"\n[bold blue]skillsearch[/] — Syncing {len(settings.registries)} registries\n")
    try:
        with console.status("Syncing..."):
            report = manager.sync(settings.registries, force=force)
    except KeyboardInterrupt:
        err_console.print("[yellow]Sync interrupted; completed registries were kept.[/]")
        sys.exit(130)
    except SkillSearchError as e:
        _fail(str(e))
    finally:
        if enricher is not None:
            enricher.close()

    table = Table(title="Sync results")
    table.add_column("Registry", style="cyan")
    table.add_column("Status")
    table.add_column("Revision", style="dim")
    table.add_column("Added", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Time", justify="right")

    for r in report.results:
        if r.ok:
            status = "[green]ok[/]"
        elif r.status == "failed":
            status = "[red]failed[/]"
        else:
            status = f"[yellow]{r.status}[/]"
        table.add_row(
            r.registry_id,
            status,
            (r.new_revision or "")[:12],
            str(r.added),
            str(r.updated),
            str(r.removed),
            str(r.skipped),
            f"{r.duration_ms / 1000:.1f}s",
        )
    console.print(table)

    for r in report.failed:
        console.print(f"  [red]x[/] {escape(r.registry_id)}: {escape(r.error)}")
    warnings = sum(len(r.warnings) for r in report.results)
    if warnings:
        console.print(f"  [yellow]![/] {warnings} skill file(s) skipped or shadowed (use -v for details)")
    for registry_id, error in report.enrichment_failures.items():
        console.print(f"  [yellow]![/] Star counts unavailable for {escape(registry_id)}: {escape(error)}")
    if report.stars_updated:
        console.print(f"  Updated star counts for {report.stars_updated} skills")

    total = session.store.count()
    if report.exit_code:
        _fail("every registry failed to sync")
    if report.failed:
        console.print(
            f"\n[yellow]Partial sync:[/] {len(report.succeeded)}/{len(report.results)} registries, "
            f"{total} skills indexed"
        )
    else:
        console.print(f"\n[green]Done.[/] {total} skills indexed")


# ── Registries ───────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def registries(settings: Settings):
    """List configured registries and their last synced revision."""
    from skillsearch.registry.store import SkillStore

    store = SkillStore(settings.db_path)
    synced = {r.id: r for r in store.list_registries()}

    table = Table(title=f"Registries ({len(settings.registries)})")
    table.add_column("ID", style="cyan")
    table.add_column("Trust")
    table.add_column("Skills", justify="right")
    table.add_column("Revision", style="dim")
    table.add_column("Location")

    for reg in settings.registries:
        trust = f"[green]{reg.trust_level.value}[/]" if reg.trusted else reg.trust_level.value
        revision = synced[reg.id].last_synced_revision if reg.id in synced else None
        count = len(store.fingerprints(reg.id))
        table.add_row(
            reg.id,
            trust,
            str(count),
            (revision or "never synced")[:12],
            reg.skill_url(""),
        )
    console.print(table)


if __name__ == "__main__":
    main()
