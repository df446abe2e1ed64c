"""Command line interface for file dispatch."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from .core.preview import PreviewService, collect_sample, preview_folder
from .core.rule_schema import create_example_rules_file, load_rules_file, validate_rule_file
from .core.scheduler import RuleScheduler
from .exceptions import FileDispatchError
from .models.config import Settings, load_settings
from .models.rule import Rule
from .storage.activity_log import ActivityLog
from .storage.rule_repository import RuleRepository

console = Console()

STATUS_STYLES = {
    "success": "green",
    "skipped": "yellow",
    "failed": "red",
    "rejected": "red",
    "cancelled": "dim",
}


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def _load(rules_file: Path, settings_file: Optional[Path]):
    settings = load_settings(settings_file) if settings_file else Settings()
    rules = load_rules_file(rules_file)
    return settings, rules


@click.group()
@click.version_option(package_name="file-dispatch")
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def cli(verbose: bool):
    """Organize files in a folder with declarative rules."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument('rules_file', type=click.Path(exists=True, path_type=Path))
def validate(rules_file: Path):
    """Validate a rules JSON file."""
    errors = validate_rule_file(rules_file)
    if errors:
        console.print(f"[red]✗ {rules_file} is invalid:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        sys.exit(1)
    console.print(f"[green]✓ {rules_file} is valid[/green]")


@cli.command()
@click.argument('output', type=click.Path(path_type=Path))
@click.option('--force', is_flag=True, help='Overwrite an existing file')
def init(output: Path, force: bool):
    """Write an example rules file to OUTPUT."""
    if output.exists() and not force:
        _fail(f"{output} already exists (use --force to overwrite)")
    with open(output, 'w', encoding='utf-8') as f:
        json.dump(create_example_rules_file(), f, indent=2)
    console.print(f"[green]Created example rules file: {output}[/green]")


@cli.command()
@click.argument('rules_file', type=click.Path(exists=True, path_type=Path))
@click.argument('folder', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--limit', type=int, default=None, help='Maximum number of files to preview')
@click.option('--rule', 'rule_name', default=None, help='Only preview the rule with this name')
@click.option('--skip-content', is_flag=True, help='Treat contents conditions as not matching')
@click.option('--settings', 'settings_file', type=click.Path(exists=True, path_type=Path),
              help='Settings JSON file')
def preview(rules_file: Path, folder: Path, limit: Optional[int], rule_name: Optional[str],
            skip_content: bool, settings_file: Optional[Path]):
    """Show which files in FOLDER each rule would match, without changing anything."""
    try:
        settings, rules = _load(rules_file, settings_file)
    except FileDispatchError as e:
        _fail(str(e))
        return

    if rule_name:
        rules = [rule for rule in rules if rule.name == rule_name]
        if not rules:
            _fail(f"No rule named '{rule_name}'")
            return

    service = PreviewService(settings)
    for rule in rules:
        items = preview_folder(service, rule, folder, limit=limit, skip_content=skip_content)
        _print_preview(rule, items)


def _print_preview(rule: Rule, items) -> None:
    table = Table(title=f"Preview: {rule.name}" + ("" if rule.enabled else " (disabled)"))
    table.add_column("File", style="cyan")
    table.add_column("Match")
    table.add_column("Conditions", style="dim")
    table.add_column("Actions")

    for item in items:
        flags = " ".join("✓" if flag else "✗" for flag in item.condition_results)
        match = "[green]yes[/green]" if item.matched else "[dim]no[/dim]"
        actions = "\n".join(item.actions) if item.actions else (item.error or "")
        table.add_row(item.file_path.name, match, flags, actions)

    console.print(table)
    matched = sum(1 for item in items if item.matched)
    console.print(f"{matched} of {len(items)} files matched\n")


@cli.command()
@click.argument('rules_file', type=click.Path(exists=True, path_type=Path))
@click.argument('folder', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--dry-run', is_flag=True, help='Show what would be done without making changes')
@click.option('--settings', 'settings_file', type=click.Path(exists=True, path_type=Path),
              help='Settings JSON file')
@click.option('--db', 'db_path', type=click.Path(path_type=Path), help='Activity log database')
def run(rules_file: Path, folder: Path, dry_run: bool, settings_file: Optional[Path],
        db_path: Optional[Path]):
    """Apply the rules in RULES_FILE to every file in FOLDER."""
    try:
        settings, rules = _load(rules_file, settings_file)
    except FileDispatchError as e:
        _fail(str(e))
        return

    repository = RuleRepository()
    folder_ids = set()
    for rule in rules:
        repository.create(rule)
        folder_ids.add(rule.folder_id)
    if len(folder_ids) > 1:
        _fail("A rules file used with 'run' must target a single folder")
        return
    folder_id = folder_ids.pop() if folder_ids else "default"

    files = collect_sample(folder, sys.maxsize, settings.ignore_patterns)
    activity_log = ActivityLog(db_path) if db_path else None

    with RuleScheduler(repository, settings, activity_log=activity_log) as scheduler:
        results = asyncio.run(scheduler.process_events([(folder_id, path) for path in files], dry_run))

    table = Table(title="Dry run" if dry_run else "Results")
    table.add_column("File", style="cyan")
    table.add_column("Rules matched")
    table.add_column("Outcomes")

    errors: List[str] = []
    for result in results:
        outcomes = "\n".join(
            f"[{STATUS_STYLES[o.status.value]}]{o.action_type.value}: {o.status.value}"
            f"{' -> ' + str(o.destination_path) if o.destination_path else ''}"
            f"[/{STATUS_STYLES[o.status.value]}]"
            for o in result.outcomes
        )
        table.add_row(result.path.name, ", ".join(result.matched_rules) or "-", outcomes)
        if result.error:
            errors.append(f"{result.path}: {result.error}")

    console.print(table)
    if errors:
        console.print("\n[red]Errors encountered:[/red]")
        for error in errors[:10]:
            console.print(f"  • {error}")
        sys.exit(1)


@cli.command()
@click.option('--db', 'db_path', type=click.Path(exists=True, path_type=Path), required=True,
              help='Activity log database')
@click.option('--limit', type=int, default=20, help='Number of entries to show')
def log(db_path: Path, limit: int):
    """Show recent activity."""
    entries = ActivityLog(db_path).recent(limit)
    if not entries:
        console.print("[yellow]No activity recorded[/yellow]")
        return

    table = Table(title="Recent activity")
    table.add_column("When", style="dim")
    table.add_column("Rule")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("File", style="cyan")
    for entry in entries:
        style = STATUS_STYLES.get(entry.status, "white")
        status = entry.status + (" (undone)" if entry.undone else "")
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.rule_name,
            entry.action_type,
            f"[{style}]{status}[/{style}]",
            str(entry.destination_path or entry.file_path),
        )
    console.print(table)


@cli.command()
@click.option('--db', 'db_path', type=click.Path(exists=True, path_type=Path), required=True,
              help='Activity log database')
def undo(db_path: Path):
    """Undo the most recent move, rename or sort."""
    result = ActivityLog(db_path).undo_last()
    if result.is_failure():
        _fail(str(result.error()))
        return
    entry = result.value()
    console.print(f"[green]Restored {entry.source_path}[/green]")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
