"""CLI entry point — the `escrub` command."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from email_scrubber.cleaners.links import LinkCleaner
from email_scrubber.cleaners.pixels import TrackerPixelRemover
from email_scrubber.core.base import (
    InvalidUrl,
    RuleCompilationWarning,
    RuleSet,
    RulesLoadError,
    SanitizeOptions,
)
from email_scrubber.core.config import get_rules_path, get_sanitize_options, load_config
from email_scrubber.mail.eml import ScrubReport, iter_eml_files, scrub_eml_file
from email_scrubber.rules.loader import (
    DEFAULT_RULES_URL,
    fetch_rules,
    load_default_rules,
    load_rules,
    save_rules,
)
from email_scrubber.sanitizer.buffered import sanitize_email
from email_scrubber.sanitizer.streaming import StreamElement

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _load_rule_set(rules_file: str | None, config: dict[str, Any] | None = None) -> RuleSet:
    try:
        if rules_file:
            return load_rules(Path(rules_file))
        return load_default_rules(config)
    except RulesLoadError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1) from e


def _build_options(
    config: dict[str, Any],
    no_urls: bool,
    no_pixels: bool,
    body_only: bool,
) -> SanitizeOptions:
    options = get_sanitize_options(config)
    overrides: dict[str, Any] = {}
    if no_urls:
        overrides["clean_urls"] = False
    if no_pixels:
        overrides["remove_tracking_pixels"] = False
    if body_only:
        overrides["preserve_document_structure"] = False
    if overrides:
        options = SanitizeOptions.model_validate({**options.model_dump(), **overrides})
    return options


@click.group()
@click.version_option(package_name="email-scrubber")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """escrub — strip tracking links and pixels from HTML email."""
    _setup_logging(verbose)


@cli.command("clean-url")
@click.argument("urls", nargs=-1, required=True)
@click.option("--rules", "rules_file", type=click.Path(exists=True), help="ClearURLs JSON file.")
def clean_url(urls: tuple[str, ...], rules_file: str | None) -> None:
    """Print each URL with tracking parameters removed."""
    options = get_sanitize_options()
    cleaner = LinkCleaner(_load_rule_set(rules_file), exception_mode=options.exception_mode)

    failed = False
    for url in urls:
        try:
            click.echo(cleaner.clean(url))
        except InvalidUrl as e:
            err_console.print(f"[red]{escape(str(e))}[/red]")
            failed = True
    if failed:
        sys.exit(1)


@cli.command("check-pixel")
@click.argument("src")
@click.option("--width", help="width attribute")
@click.option("--height", help="height attribute")
@click.option("--alt", help="alt attribute")
@click.option("--style", help="style attribute")
def check_pixel(
    src: str,
    width: str | None,
    height: str | None,
    alt: str | None,
    style: str | None,
) -> None:
    """Classify a single image. Exit status 0 = tracking pixel, 2 = legitimate."""
    attrs = [("src", src)]
    for name, value in (("width", width), ("height", height), ("alt", alt), ("style", style)):
        if value is not None:
            attrs.append((name, value))

    options = get_sanitize_options()
    remover = TrackerPixelRemover(options.tracker_pixel_options)
    if remover.is_tracking_pixel(StreamElement("img", attrs, raw="")):
        console.print("[red]tracking pixel[/red]")
        return
    console.print("[green]legitimate image[/green]")
    sys.exit(2)


def _render_reports(reports: list[ScrubReport], dry_run: bool) -> None:
    title = "Scrub Results (dry-run)" if dry_run else "Scrub Results"
    table = Table(title=title)
    table.add_column("File", style="bold")
    table.add_column("Links cleaned", justify="right")
    table.add_column("Pixels removed", justify="right")
    table.add_column("Status")

    for report in reports:
        if report.error:
            status = f"[red]error: {escape(report.error)}[/red]"
        elif report.rewritten:
            status = "[green]rewritten[/green]"
        elif report.was_modified:
            status = "[yellow]would rewrite[/yellow]"
        else:
            status = "[dim]clean[/dim]"
        table.add_row(
            Path(report.path).name,
            str(report.urls_cleaned),
            str(report.tracking_pixels_removed),
            status,
        )
    console.print(table)


def _scrub_html_file(
    path: Path, cleaner: LinkCleaner, options: SanitizeOptions, dry_run: bool
) -> ScrubReport:
    report = ScrubReport(path=str(path), dry_run=dry_run, html_parts=1)
    try:
        html = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        report.error = str(e)
        return report

    result = sanitize_email(html, cleaner, options)
    report.urls_cleaned = result.urls_cleaned
    report.tracking_pixels_removed = result.tracking_pixels_removed
    if result.was_modified and not dry_run:
        path.write_text(result.html, encoding="utf-8")
        report.rewritten = True
    return report


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.option(
    "--apply",
    "apply_",
    is_flag=True,
    help="Actually rewrite files (default is dry-run).",
)
@click.option("--format", "output_format", type=click.Choice(["rich", "json"]), default="rich")
@click.option("--rules", "rules_file", type=click.Path(exists=True), help="ClearURLs JSON file.")
@click.option("--no-urls", is_flag=True, help="Leave links untouched.")
@click.option("--no-pixels", is_flag=True, help="Leave images untouched.")
@click.option("--body-only", is_flag=True, help="Keep only the <body> contents of HTML files.")
@click.option("--config", "config_file", type=click.Path(exists=True), help="TOML config file.")
def scrub(
    path: str,
    apply_: bool,
    output_format: str,
    rules_file: str | None,
    no_urls: bool,
    no_pixels: bool,
    body_only: bool,
    config_file: str | None,
) -> None:
    """Scrub .eml files (or a directory of them) and .html files. Dry-run by default."""
    dry_run = not apply_
    config = load_config(Path(config_file) if config_file else None)
    options = _build_options(config, no_urls, no_pixels, body_only)
    cleaner = LinkCleaner(
        _load_rule_set(rules_file, config), exception_mode=options.exception_mode
    )

    target = Path(path)
    if target.is_file() and target.suffix.lower() in (".html", ".htm"):
        reports = [_scrub_html_file(target, cleaner, options, dry_run)]
    else:
        reports = [
            scrub_eml_file(eml_path, cleaner, options, dry_run=dry_run)
            for eml_path in iter_eml_files(target)
        ]

    if output_format == "json":
        data = [{**r.model_dump(), "was_modified": r.was_modified} for r in reports]
        click.echo(json.dumps(data, indent=2))
        return

    if not reports:
        console.print(f"[yellow]No .eml or .html files found in '{escape(path)}'.[/yellow]")
        return

    if dry_run:
        console.print(
            "[yellow]Dry-run mode — no files will be changed. Use --apply to rewrite.[/yellow]\n"
        )
    _render_reports(reports, dry_run)


@cli.group()
def rules() -> None:
    """Manage ClearURLs rule sets."""


@rules.command("update")
@click.option("--url", default=DEFAULT_RULES_URL, show_default=True, help="Rule corpus URL.")
@click.option("--output", "-o", type=click.Path(), help="Where to save (default: rules path).")
def rules_update(url: str, output: str | None) -> None:
    """Download the ClearURLs rule corpus."""
    try:
        rule_set = asyncio.run(fetch_rules(url))
    except RulesLoadError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1) from e

    dest = Path(output) if output else get_rules_path()
    save_rules(rule_set, dest)
    count = len(rule_set.providers)
    console.print(f"[green]Saved {count} providers to {escape(str(dest))}[/green]")


@rules.command("check")
@click.argument("rules_file", required=False, type=click.Path(exists=True))
def rules_check(rules_file: str | None) -> None:
    """Compile a rule set and report patterns that fail to compile."""
    rule_set = _load_rule_set(rules_file)
    warnings: list[RuleCompilationWarning] = []
    cleaner = LinkCleaner(rule_set, sink=warnings.append)

    compiled = cleaner.compiled
    console.print(
        Panel(
            f"[bold]{len(compiled.by_key)}[/bold] providers "
            f"([bold]{len(compiled.global_providers)}[/bold] global)",
            title="[bold]Rule Set[/bold]",
            style="blue",
        )
    )

    if not warnings:
        console.print("[green]All patterns compiled.[/green]")
        return

    table = Table(title="Invalid Patterns")
    table.add_column("Provider", style="bold")
    table.add_column("Field")
    table.add_column("Pattern")
    table.add_column("Error", style="red")
    for warning in warnings:
        table.add_row(
            escape(warning.provider), warning.field, escape(warning.pattern), escape(warning.error)
        )
    console.print(table)
    sys.exit(1)
