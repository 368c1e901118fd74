from __future__ import annotations

import json
import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import Any

import click
from rich.console import Console

from media_resolver.config import Config
from media_resolver.console import make_progress, print_error, set_console
from media_resolver.ranker import CandidateRanking
from media_resolver.resolver import MediaResolver, ResolutionResult
from media_resolver.safe_logging import configure_safe_logging, redact_dict

log = logging.getLogger(__name__)


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"


class ExitCode:
    """Standard exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    NO_RESULTS = 2


def _read_titles(path: Path) -> list[str]:
    """One title per line; blank lines and ``#`` comments are skipped."""
    titles = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            titles.append(line)
    return titles


def _get_resolver(ctx: click.Context) -> MediaResolver:
    """The resolver for this invocation; exits with an error if TMDB is not configured."""
    resolver: MediaResolver | None = ctx.obj.get("resolver")
    if resolver is None:
        resolver = MediaResolver.from_config(ctx.obj["config"])
        ctx.obj["resolver"] = resolver
        ctx.call_on_close(resolver.close)

    if not resolver.is_available():
        print_error("TMDB API key not configured (set TMDB_API_KEY or [catalog].api_key)")
        sys.exit(ExitCode.ERROR)
    return resolver


def _echo_result(query: str, result: ResolutionResult | None) -> None:
    if result is None:
        click.echo(f"\n✘ {query}: no match")
        return

    year = f" ({result.release_year})" if result.release_year else ""
    click.echo(f"\n✔︎ {query}")
    click.echo(f"  {result.media_type}: {result.title}{year}  [tmdb:{result.catalog_id}]")
    click.echo(
        f"  Match: {result.match_confidence}% ({result.match_method})  "
        f"Rating: {result.rating} ({result.vote_count} votes)"
    )
    if result.genres:
        click.echo(f"  Genres: {', '.join(result.genres)}")
    if result.director:
        click.echo(f"  Director: {result.director}")
    if result.cast:
        click.echo(f"  Cast: {', '.join(result.cast)}")
    if result.poster_url:
        click.echo(f"  Poster: {result.poster_url}")
    if result.backdrop_url:
        click.echo(f"  Backdrop: {result.backdrop_url}")


def _echo_ranking(query: str, ranking: CandidateRanking) -> None:
    if not ranking.candidates:
        click.echo(f"No candidates for {query!r}")
        return

    click.echo(f"Candidates for {query!r}:")
    for i, ranked in enumerate(ranking.candidates, start=1):
        c = ranked.candidate
        click.echo(
            f"  {i}. [{ranked.level:<6}] {ranked.confidence:.2f}  "
            f"{c.media_type}: {c.label}  [tmdb:{c.catalog_id}]"
        )
        click.echo(f"       {'; '.join(ranked.signals)}")
    if ranking.needs_user_confirmation:
        click.echo("\nAmbiguous: please confirm the intended title.")


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration TOML file",
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v for INFO, -vv for DEBUG)")
@click.option("--no-cache", is_flag=True, help="Disable HTTP caching")
@click.option("--no-classifier", is_flag=True, help="Infer batch context without the LLM")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    output: str,
    verbose: int,
    no_cache: bool,
    no_classifier: bool,
) -> None:
    """
    media-resolver: resolve free-text movie and TV titles to TMDB entries.
    """
    cfg = Config.load(config)

    # CLI > Env > Config File > Defaults
    if no_cache:
        cfg.http_cache.enabled = False
    if no_classifier:
        cfg.classifier.enabled = False

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        level_str = cfg.logging.level.upper()
        log_level = getattr(logging, level_str, logging.WARNING)

    configure_safe_logging(level=log_level, format_string=cfg.logging.format)
    if config:
        log.info("Loaded config from %s", config)
    log.debug("Effective config: %s", redact_dict(cfg.model_dump(mode="json")))

    # Progress and errors go to stderr so JSON on stdout stays parseable
    set_console(Console(stderr=True))

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg
    ctx.obj["output"] = OutputFormat(output)


@main.command()
@click.argument("query")
@click.option("--year", type=int, help="Release year hint, wins over a year in the query")
@click.pass_context
def resolve(ctx: click.Context, query: str, year: int | None) -> None:
    """Resolve a single title."""
    resolver = _get_resolver(ctx)
    result = resolver.resolve(query, year_hint=year)

    if ctx.obj["output"] == OutputFormat.JSON:
        click.echo(json.dumps(result.to_dict() if result else None, indent=2))
    else:
        _echo_result(query, result)

    sys.exit(ExitCode.SUCCESS if result else ExitCode.NO_RESULTS)


@main.command()
@click.argument("titles", nargs=-1)
@click.option(
    "--file",
    "titles_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read titles from a file, one per line",
)
@click.pass_context
def batch(ctx: click.Context, titles: tuple[str, ...], titles_file: Path | None) -> None:
    """
    Resolve related titles together.

    Titles submitted together share a batch context (years, language, media
    type) that helps disambiguate each of them.
    """
    all_titles = list(titles)
    if titles_file:
        all_titles.extend(_read_titles(titles_file))
    if not all_titles:
        print_error("No titles given (pass titles or --file)")
        sys.exit(ExitCode.ERROR)

    resolver = _get_resolver(ctx)
    results: dict[str, ResolutionResult | None] = {}

    with make_progress() as progress:
        task = progress.add_task("Inferring batch context...", total=len(all_titles))
        with resolver.batch_scope(all_titles) as context:
            progress.update(task, description="Resolving...")
            for title in all_titles:
                if title not in results:
                    results[title] = resolver.resolve_in_batch(title, context)
                progress.update(task, advance=1)

    if ctx.obj["output"] == OutputFormat.JSON:
        payload: dict[str, Any] = {
            title: result.to_dict() if result else None for title, result in results.items()
        }
        click.echo(json.dumps(payload, indent=2))
    else:
        for title, result in results.items():
            _echo_result(title, result)
        matched = sum(1 for r in results.values() if r is not None)
        click.echo(f"\nResolved {matched}/{len(results)} titles")

    sys.exit(ExitCode.SUCCESS if any(results.values()) else ExitCode.NO_RESULTS)


@main.command()
@click.argument("query")
@click.option("--max", "max_results", type=click.IntRange(min=1), help="Number of candidates")
@click.pass_context
def candidates(ctx: click.Context, query: str, max_results: int | None) -> None:
    """Rank likely matches for an ambiguous title."""
    resolver = _get_resolver(ctx)
    ranking = resolver.resolve_with_candidates(query, max_results=max_results)

    if ctx.obj["output"] == OutputFormat.JSON:
        click.echo(json.dumps(ranking.to_dict(), indent=2))
    else:
        _echo_ranking(query, ranking)

    sys.exit(ExitCode.SUCCESS if ranking.candidates else ExitCode.NO_RESULTS)


@main.group()
def cache() -> None:
    """Manage the HTTP response cache."""


@cache.command()
@click.option("--expired-only", is_flag=True, help="Only purge expired entries")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def purge(ctx: click.Context, expired_only: bool, force: bool) -> None:
    """Clear cached catalog responses."""
    from media_resolver.http_cache import HttpCache

    config: Config = ctx.obj["config"]
    output_format: OutputFormat = ctx.obj["output"]

    cache_dir = config.http_cache.directory
    if not cache_dir.exists():
        click.echo("Cache directory does not exist.")
        sys.exit(ExitCode.SUCCESS)

    http_cache = HttpCache(cache_dir, ttl_seconds=config.http_cache.ttl_seconds)

    if expired_only:
        removed = http_cache.purge_expired()
        result = {"action": "purge_expired", "removed_entries": removed}
    else:
        if not force:
            click.confirm("Are you sure you want to clear the cache?", abort=True)
        removed = http_cache.clear()
        result = {"action": "purge_all", "removed_entries": removed}

    if output_format == OutputFormat.JSON:
        click.echo(json.dumps(result, indent=2))
    elif expired_only:
        click.echo(f"✔︎ Purged {removed} expired entries")
    else:
        click.echo(f"✔︎ Cleared {removed} entries")

    sys.exit(ExitCode.SUCCESS)


if __name__ == "__main__":
    main()
