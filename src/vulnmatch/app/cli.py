from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

import typer
from pydantic import ValidationError

from .container import Container
from ..core.domain.errors import SyncInProgressError
from ..core.domain.evidence import ArtifactSet
from ..core.domain.models import AnalysisResult, CorpusMetadata, SyncReport
from ..core.usecases.analyze_artifacts import failing_findings


app = typer.Typer(help="Identify known vulnerabilities (CVE) in third-party components")


@app.callback()
def main(verbose: bool = typer.Option(False, "-v", "--verbose", help="Log progress to stderr")) -> None:
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@contextmanager
def provide_container() -> Iterator[Container]:
    container = Container()
    try:
        container.app_config()
    except ValidationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)
    container.init_resources()
    try:
        store = container.store()
        if store.count_records() > 0:
            container.index().rebuild(store)
        yield container
    finally:
        container.shutdown_resources()


def _run_update(container: Container, *, force_full: bool = False) -> SyncReport:
    uc = container.sync_uc()
    try:
        return uc.execute(force_full=force_full)
    except SyncInProgressError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=3)


@app.command(help="Synchronize the local vulnerability corpus with the NVD (update only, no analysis).")
def update(
    force_full: bool = typer.Option(False, "--full", help="Download the whole corpus even if an incremental update would do"),
) -> None:
    with provide_container() as container:
        report = _run_update(container, force_full=force_full)
        _print_report(report)
        if not report.succeeded:
            raise typer.Exit(code=1)


@app.command(help="Delete the local vulnerability corpus; the next update downloads everything.")
def purge(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")) -> None:
    if not yes:
        typer.confirm("Delete the local vulnerability corpus?", abort=True)
    with provide_container() as container:
        try:
            container.purge_uc().execute()
        except SyncInProgressError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=3)
        typer.echo("Corpus purged")


@app.command(help="Show corpus metadata (last modified, record count, last full sync).")
def info() -> None:
    with provide_container() as container:
        _print_metadata(container.store().get_metadata())


@app.command(help="Identify components from artifact file names and list their known vulnerabilities.")
def check(
    paths: list[Path] = typer.Argument(..., help="Artifact files (e.g. lib/jackson-databind-2.9.8.jar)", metavar="PATH"),
    fail_on_cvss: float | None = typer.Option(
        None, "--fail-on-cvss", min=0, max=11, help="Exit 1 when a finding scores at least this (default: config fail_on_cvss)"
    ),
    no_update: bool = typer.Option(False, "--no-update", help="Do not synchronize before analysis"),
) -> None:
    with provide_container() as container:
        config = container.app_config()
        if config.auto_update and not no_update:
            try:
                report = container.sync_uc().execute()
            except SyncInProgressError as e:
                typer.echo(f"Warning: {e}; analyzing against the current corpus", err=True)
            else:
                if not report.succeeded:
                    typer.echo(f"Warning: update ended in {report.state.value}: {report.error}", err=True)

        artifacts = ArtifactSet()
        for p in paths:
            artifacts.get_or_create(str(p), str(p))

        results = container.analyze_uc().execute(list(artifacts))
        _print_results(results)

        threshold = config.fail_on_cvss if fail_on_cvss is None else fail_on_cvss
        failing = failing_findings(results, threshold)
        if failing:
            typer.echo(f"{len(failing)} finding(s) with CVSS >= {threshold:g}", err=True)
            raise typer.Exit(code=1)


def _print_report(report: SyncReport) -> None:
    mode = report.mode.value if report.mode else "-"
    print(f"State: {report.state.value}  Mode: {mode}")
    print(f"Pages: {report.pages}  Merged: {report.records_merged}  Removed: {report.records_removed}")
    if report.error is not None:
        print(f"Error: {type(report.error).__name__}: {report.error}")


def _print_metadata(meta: CorpusMetadata) -> None:
    def _fmt(value) -> str:
        return value.isoformat() if value is not None else "-"

    print(f"Records:        {meta.total_record_count}")
    print(f"Last modified:  {_fmt(meta.last_modified)}")
    print(f"Last checked:   {_fmt(meta.last_checked_at)}")
    print(f"Last full sync: {_fmt(meta.last_full_sync_at)}")
    print(f"Schema version: {meta.schema_version}")


def _print_results(results: Sequence[AnalysisResult]) -> None:
    """Print one block per artifact: identifiers with confidence, then CVE, CVSS, severity."""
    for r in results:
        print(r.artifact_id)
        if r.error:
            print(f"  error: {r.error}")
            continue
        if not r.components:
            print("  no known components")
        for c in r.components:
            print(f"  {c.identifier.to_cpe23()} [{c.confidence.name}]")
            for v in c.vulnerabilities:
                score = f"{v.record.cvss_score:.1f}" if v.record.cvss_score is not None else "-"
                sev = v.record.severity.name if v.record.severity else "-"
                print(f"    {v.id:18} {score:>5} {sev}")
        for s in r.suppressed:
            target = s.vulnerability.id if s.vulnerability else s.identifier.to_cpe23()
            print(f"  suppressed {target}: {s.reason}")


if __name__ == "__main__":  # pragma: no cover
    app()
