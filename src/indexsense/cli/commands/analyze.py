"""Analysis commands: analyze, indexes."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from indexsense.analyzer.models import Severity
from indexsense.config import get_config, parse_column_list
from indexsense.engine import AnalysisSession, QueryAnalysis, QueryParameter, RepositoryQuery
from indexsense.exceptions import ConfigurationError, IndexSenseError
from indexsense.migrations import load_changelog
from indexsense.output.changesets import add_master_include, build_changelog_document
from indexsense.schema import IndexKind, SchemaSnapshot

console = Console()
error_console = Console(stderr=True)

_SEVERITY_STYLES = {
    Severity.HIGH: "red bold",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}


# ── Manifest loading ─────────────────────────────────────────────────


def _entry_to_query(entry: dict[str, Any]) -> RepositoryQuery:
    parameters = tuple(
        QueryParameter(name=p.get("name"), column=p.get("column"), position=p.get("position"))
        for p in entry.get("parameters") or ()
    )
    return RepositoryQuery(
        repository_class=entry.get("repository") or entry.get("repository_class") or "",
        method_name=entry.get("method") or entry.get("method_name") or "",
        sql=entry.get("sql"),
        table=entry.get("table"),
        parameters=parameters,
    )


def load_manifest(path: Path) -> list[RepositoryQuery]:
    """
    Load repository queries from a JSON or YAML manifest.

    The document is either a list of query entries or a mapping with a
    ``queries`` list.

    Raises:
        ConfigurationError: The manifest cannot be read or is malformed.
    """
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read query manifest {path}: {e}", config_key="queries") from e

    if isinstance(data, dict):
        data = data.get("queries")
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigurationError("Query manifest must be a list of queries", config_key="queries")

    queries = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Query entry {i} is not a mapping", config_key="queries")
        try:
            queries.append(_entry_to_query(entry))
        except (ValidationError, AttributeError) as e:
            raise ConfigurationError(f"Invalid query entry {i}: {e}", config_key="queries") from e
    return queries


# ── Rendering ────────────────────────────────────────────────────────


def _print_analysis(analysis: QueryAnalysis) -> None:
    query = analysis.query
    if analysis.skipped:
        return
    if analysis.error:
        console.print(f"[red]✗[/red] {escape(query.query_id)}: [dim]{escape(analysis.error)}[/dim]")
        return
    if analysis.issue is None:
        console.print(f"[green]✓[/green] {escape(query.query_id)}")
        return

    issue = analysis.issue
    style = _SEVERITY_STYLES[issue.severity]
    console.print(
        f"[{style}][{issue.severity.value}][/{style}] {escape(query.query_id)}"
    )
    console.print(f"   [dim]{escape(issue.description)}[/dim]")
    if analysis.where_clause_text:
        console.print(f"   WHERE {escape(analysis.where_clause_text)}")
    console.print(f"   Recommended order: {escape(', '.join(issue.recommended_column_order))}")
    if issue.advisory_explanation:
        console.print(f"   [italic]{escape(issue.advisory_explanation)}[/italic]")


def _summary_table(session: AnalysisSession) -> Table:
    summary = session.summary
    table = Table(title="Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Queries analyzed", str(summary.queries_analyzed))
    table.add_row("Queries failed", str(summary.queries_failed))
    table.add_row("Queries skipped", str(summary.queries_skipped))
    table.add_row("[red]HIGH[/red] issues", str(summary.high_issues))
    table.add_row("[yellow]MEDIUM[/yellow] issues", str(summary.medium_issues))
    table.add_row("[blue]LOW[/blue] issues", str(summary.low_issues))
    table.add_row("Indexes to create", str(summary.create_count))
    table.add_row("Indexes to drop", str(summary.drop_count))
    return table


def _json_report(session: AnalysisSession, creates: tuple[str, ...], drops: tuple[str, ...]) -> dict[str, Any]:
    return {
        "queries": [
            {
                "query_id": r.query.query_id,
                "skipped": r.skipped,
                "error": r.error,
                "where": r.where_clause_text,
                "conditions": [
                    {
                        "table": c.table_name,
                        "column": c.column_name,
                        "operator": c.operator,
                        "cardinality": c.cardinality.value,
                        "position": c.position,
                    }
                    for c in r.conditions
                ],
                "joins": [str(j) for j in r.join_conditions],
            }
            for r in session.results
        ],
        "issues": [i.model_dump(mode="json") for i in session.issues()],
        "changesets": {"create": list(creates), "drop": list(drops)},
        "summary": session.summary.to_dict(),
    }


def _write_changelog(
    output: Path,
    changesets: tuple[str, ...],
    master: Path | None,
    status: Console = console,
) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(build_changelog_document(changesets), encoding="utf-8")
    status.print(f"[green]Wrote {len(changesets)} changeset(s) to {escape(str(output))}[/green]")
    if master is not None:
        include = Path(os.path.relpath(output.resolve(), master.resolve().parent)).as_posix()
        if add_master_include(master, include):
            status.print(f"[green]Added include for {escape(include)} to {escape(str(master))}[/green]")


# ── Commands ─────────────────────────────────────────────────────────


def register(app: typer.Typer) -> None:
    """Register analysis commands on the given Typer app."""

    @app.command()
    def analyze(
        queries_file: Annotated[
            Path,
            typer.Argument(
                help="Query manifest (JSON or YAML)",
                exists=True,
                readable=True,
                resolve_path=True,
            ),
        ],
        changelog: Annotated[
            Optional[Path],
            typer.Option(
                "--changelog",
                "-c",
                help="Liquibase master changelog with the current indexes",
                exists=True,
                readable=True,
                resolve_path=True,
            ),
        ] = None,
        low_cardinality: Annotated[
            Optional[str],
            typer.Option("--low-cardinality", help="Comma separated columns to treat as LOW"),
        ] = None,
        high_cardinality: Annotated[
            Optional[str],
            typer.Option("--high-cardinality", help="Comma separated columns to treat as HIGH"),
        ] = None,
        skip_class: Annotated[
            Optional[list[str]],
            typer.Option("--skip-class", help="Repository class to skip (repeatable)"),
        ] = None,
        quiet: Annotated[
            bool,
            typer.Option("--quiet", "-q", help="Only print queries that need attention"),
        ] = False,
        json_output: Annotated[
            bool,
            typer.Option("--json", "-j", help="Output results as JSON"),
        ] = False,
        output: Annotated[
            Optional[Path],
            typer.Option("--output", "-o", help="Write changesets to this changelog file"),
        ] = None,
        master: Annotated[
            Optional[Path],
            typer.Option("--master", help="Master changelog to include --output in"),
        ] = None,
    ) -> None:
        """
        Analyze repository queries and recommend predicate order and indexes.

        Examples:

            $ indexsense analyze queries.yaml --changelog db.changelog-master.xml

            $ indexsense analyze queries.yaml -c master.xml --low-cardinality status,type
        """
        try:
            config = get_config()
            updates: dict[str, Any] = {}
            if low_cardinality:
                updates["low_cardinality_columns"] = (
                    config.low_cardinality_columns | parse_column_list(low_cardinality)
                )
            if high_cardinality:
                updates["high_cardinality_columns"] = (
                    config.high_cardinality_columns | parse_column_list(high_cardinality)
                )
            if skip_class:
                updates["skip_classes"] = tuple(config.skip_classes) + tuple(skip_class)
            if quiet:
                updates["quiet"] = True
            if updates:
                config = config.model_copy(update=updates)

            schema = load_changelog(changelog) if changelog else SchemaSnapshot()
            queries = load_manifest(queries_file)

            session = AnalysisSession(config=config, schema=schema)
            analyses = session.analyze_all(queries)
            rendered = session.render_changesets()

            if json_output:
                console.print_json(json.dumps(_json_report(session, rendered.creates, rendered.drops)))
            else:
                for analysis in analyses:
                    if config.quiet and analysis.issue is None and analysis.error is None:
                        continue
                    _print_analysis(analysis)
                if output is None and rendered.all:
                    console.print()
                    for changeset in rendered.all:
                        console.print(changeset, markup=False, highlight=False)
                        console.print()
                console.print(_summary_table(session))

            if output is not None and rendered.all:
                # JSON mode keeps stdout machine-readable
                status = error_console if json_output else console
                _write_changelog(output, rendered.all, master, status)

        except IndexSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        if session.should_fail():
            error_console.print(
                f"[red]Failing:[/red] {session.summary.high_issues} HIGH and "
                f"{session.summary.medium_issues} MEDIUM issue(s)"
            )
            raise typer.Exit(code=1)

    @app.command()
    def indexes(
        changelog: Annotated[
            Path,
            typer.Argument(
                help="Liquibase changelog (includes are followed)",
                exists=True,
                readable=True,
                resolve_path=True,
            ),
        ],
    ) -> None:
        """List primary keys, unique constraints and indexes per table."""
        try:
            snapshot = load_changelog(changelog)
        except IndexSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        if not len(snapshot):
            console.print(Panel("[yellow]No index metadata found[/yellow]", title="IndexSense"))
            return

        table = Table()
        table.add_column("Table", style="cyan")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Columns")
        for name, entries in snapshot.items():
            for index in entries:
                kind = "PK" if index.kind is IndexKind.PRIMARY_KEY else (
                    "UNIQUE" if index.kind.is_unique else "INDEX"
                )
                table.add_row(name, kind, escape(index.name), ", ".join(index.columns))
        console.print(table)
