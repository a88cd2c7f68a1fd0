#!/usr/bin/env python3
"""
RAMPART - Concurrent template scanning engine

Command line entry point.

Usage:
    python main.py scan --target https://example.com --templates-dir templates
    python main.py scan --list targets.txt --tags exposure --per-target
    python main.py templates --templates-dir templates
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from rampart import __version__
from rampart.core import (
    EngineBuilder,
    RampartError,
    configure_logging,
    enable_stats,
    with_concurrency,
    with_config_file,
    with_network_config,
    with_output_file,
    with_rate_limit,
    with_template_dir,
    with_template_filters,
    with_templates,
    with_verbosity,
    with_workflows,
)
from rampart.scanners import ResultEvent


console = Console()


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _read_targets(targets: tuple, target_list: Optional[str]) -> List[str]:
    collected = list(targets)
    if target_list:
        collected.extend(Path(target_list).read_text(encoding="utf-8").splitlines())
    return [target for target in collected if target.strip()]


@click.group()
@click.version_option(version=__version__, prog_name="RAMPART")
def cli():
    """
    RAMPART - Concurrent template scanner

    Runs YAML templates against targets.
    """
    pass


@cli.command()
@click.option('--target', '-u', 'targets', multiple=True, help='Target URL or host (repeatable)')
@click.option('--list', '-l', 'target_list', type=click.Path(exists=True), help='File with one target per line')
@click.option('--config', type=click.Path(exists=True), help='YAML config file')
@click.option('--templates-dir', help='Template directory (default: templates)')
@click.option('--template', '-t', 'templates', multiple=True, help='Template file or directory (repeatable)')
@click.option('--workflow', '-w', 'workflows', multiple=True, help='Workflow file (repeatable)')
@click.option('--tags', help='Comma separated tags to include')
@click.option('--exclude-tags', help='Comma separated tags to exclude')
@click.option('--severity', help='Comma separated severities to include')
@click.option('--rate-limit', type=int, help='Requests per second (default: 150)')
@click.option('--rate-limit-minute', type=int, help='Requests per minute (overrides --rate-limit)')
@click.option('--concurrency', '-c', type=int, help='Work items run in parallel (default: 25)')
@click.option('--timeout', type=float, help='Request timeout in seconds (default: 10)')
@click.option('--output', '-o', type=click.Path(), help='Write results as JSON lines')
@click.option('--per-target', is_flag=True, help='Run one concurrent scan per target')
@click.option('--stats', is_flag=True, help='Print request counters at the end')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option('--silent', is_flag=True, help='Only print results')
@click.option('--json-logs', is_flag=True, help='Emit logs as JSON')
def scan(
    targets: tuple,
    target_list: Optional[str],
    config: Optional[str],
    templates_dir: Optional[str],
    templates: tuple,
    workflows: tuple,
    tags: Optional[str],
    exclude_tags: Optional[str],
    severity: Optional[str],
    rate_limit: Optional[int],
    rate_limit_minute: Optional[int],
    concurrency: Optional[int],
    timeout: Optional[float],
    output: Optional[str],
    per_target: bool,
    stats: bool,
    verbose: bool,
    silent: bool,
    json_logs: bool,
):
    """
    Scan targets with templates.

    Example:
        python main.py scan -u https://example.com --templates-dir templates
        python main.py scan -l targets.txt --tags exposure,cve --per-target
    """
    configure_logging(verbose=verbose, json_logs=json_logs)

    # Config file first, command line flags override it
    option_fns = []
    if config:
        option_fns.append(with_config_file(config))
    if templates_dir:
        option_fns.append(with_template_dir(templates_dir))
    if templates:
        option_fns.append(with_templates(*templates))
    if workflows:
        option_fns.append(with_workflows(*workflows))
    if tags or exclude_tags or severity:
        option_fns.append(with_template_filters(
            tags=_split(tags),
            exclude_tags=_split(exclude_tags),
            severities=_split(severity),
        ))
    if rate_limit is not None:
        option_fns.append(with_rate_limit(rate_limit))
    if rate_limit_minute is not None:
        option_fns.append(with_rate_limit(rate_limit_minute, per="minute"))
    if concurrency is not None:
        option_fns.append(with_concurrency(concurrency))
    if timeout is not None:
        option_fns.append(with_network_config(timeout=timeout))
    if output:
        option_fns.append(with_output_file(output))
    if stats:
        option_fns.append(enable_stats())
    if verbose or silent:
        option_fns.append(with_verbosity(verbose=verbose, silent=silent))

    try:
        all_targets = _read_targets(targets, target_list)
        results = asyncio.run(run_scan(all_targets, option_fns, per_target, silent))
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Scan interrupted by user[/yellow]")
        sys.exit(1)
    except RampartError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if not silent:
        print_results(results)


async def run_scan(
    targets: List[str],
    option_fns: list,
    per_target: bool,
    silent: bool,
) -> List[ResultEvent]:
    """
    Run the scan on a thread-safe engine.

    With ``per_target`` every target is its own invocation and all of them
    run concurrently.
    """
    results: List[ResultEvent] = []

    builder = EngineBuilder(*option_fns)
    builder.set_result_callback(results.append)
    engine = builder.build()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            disable=silent,
        ) as progress:
            task = progress.add_task(f"[cyan]Scanning {len(targets)} target(s)...", total=None)

            if per_target and targets:
                # Let every invocation finish before the engine is closed
                outcomes = await asyncio.gather(
                    *(engine.execute([target]) for target in targets),
                    return_exceptions=True,
                )
                errors = [o for o in outcomes if isinstance(o, BaseException)]
                if errors:
                    raise errors[0]
            else:
                await engine.execute(targets)

            progress.update(task, description="[green]Scan complete!")
    finally:
        engine.close()

    return results


def print_results(results: List[ResultEvent]):
    """Print matched results and failed work items"""
    matched = [r for r in results if r.matched]
    failed = [r for r in results if not r.matched]

    console.print("\n" + "=" * 80)
    if matched:
        table = Table(title="Results")
        table.add_column("Template", style="cyan", no_wrap=True)
        table.add_column("Severity", style="yellow")
        table.add_column("Matched At", style="green")
        for result in matched:
            table.add_row(result.template_id, result.severity.value, result.matched_at or result.target)
        console.print(table)
    else:
        console.print("[dim]No results found[/dim]")

    if failed:
        console.print(f"\n[yellow]{len(failed)} work item(s) failed[/yellow]")
        for result in failed[:10]:
            console.print(f"  {result.template_id} -> {result.target}: {result.error}")

    console.print("=" * 80 + "\n")


@cli.command()
@click.option('--templates-dir', default='templates', help='Template directory')
@click.option('--tags', help='Comma separated tags to include')
def templates(templates_dir: str, tags: Optional[str]):
    """List the templates and workflows that would be loaded"""
    configure_logging()

    builder = EngineBuilder(
        with_template_dir(templates_dir),
        with_template_filters(tags=_split(tags)),
        with_verbosity(silent=True),
    )
    try:
        store = builder.load_all_templates()
    except RampartError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        builder.close()

    table = Table(title=f"Templates in {templates_dir}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Severity", style="yellow")
    table.add_column("Tags", style="green")

    for template in store.templates():
        table.add_row(template.id, "template", template.info.severity, ", ".join(template.info.tags))
    for workflow in store.workflows():
        table.add_row(workflow.id, "workflow", workflow.info.severity, ", ".join(workflow.info.tags))

    console.print(table)


@cli.command()
def version():
    """Show version information"""
    console.print(f"\n[bold cyan]RAMPART v{__version__}[/bold cyan]")
    console.print("[cyan]Concurrent template scanning engine[/cyan]\n")


if __name__ == '__main__':
    cli()
