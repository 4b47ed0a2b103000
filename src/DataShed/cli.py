"""Command line interface for a datashed.

Commands:
  - init: create a shed in a directory
  - import: import documents from directories, text files or JSONL files
  - promote / discard / reinstate / rate: review transitions
  - seal / bundles / verify-bundle / restore: bundle archival
  - list / show / cat / grep / summary: read-only views
  - status / verify / clean: consistency between ledger and store
  - config show / validate / schema: configuration helpers
"""

from __future__ import annotations

import csv
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from tqdm import tqdm

from DataShed.archive.archiver import Selector
from DataShed.archive.restore import restore_bundle
from DataShed.config.loader import export_config_schema, validate_config_file
from DataShed.consistency import Mode
from DataShed.errors import DataShedError, DocumentNotFound
from DataShed.logging import setup_logging
from DataShed.models import LEDGER_FIELDS, Candidate, Status
from DataShed.pipeline.sources import iter_directory, iter_jsonl
from DataShed.review import BatchResult, read_ratings
from DataShed.shed import Shed, discover_root

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(help="Curate a content-addressed document shed", no_args_is_help=True)
config_app = typer.Typer(help="Configuration helpers")
app.add_typer(config_app, name="config")

_HANDLED = (DataShedError, OSError, ValueError)

# ============================================================================
# Setup
# ============================================================================


@app.callback()
def main(
    ctx: typer.Context,
    shed_dir: Optional[Path] = typer.Option(
        None, "--shed", "-C", help="Shed directory (default: discovered from the working directory)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only warnings and errors, no progress"),
) -> None:
    ctx.obj = {"shed_dir": shed_dir, "verbose": verbose, "quiet": quiet}


def _log_level(ctx: typer.Context, default: str) -> str:
    if ctx.obj.get("verbose"):
        return "DEBUG"
    if ctx.obj.get("quiet"):
        return "WARNING"
    return default


def _open(ctx: typer.Context, cli_overrides: Optional[Dict[str, Any]] = None) -> Shed:
    shed = Shed.open(ctx.obj.get("shed_dir"), cli_overrides=cli_overrides)
    cfg = shed.config.logging
    log_file = None
    if cfg.file:
        log_file = Path(cfg.file) if Path(cfg.file).is_absolute() else shed.root / cfg.file
    setup_logging(level=_log_level(ctx, cfg.level), json_format=cfg.json_format, log_file=log_file)
    return shed


def _fail(e: Exception) -> None:
    typer.echo(f"✗ Error: {e}", err=True)
    raise typer.Exit(code=1)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _read_ids(ids: List[str], from_file: Optional[Path]) -> List[str]:
    collected = list(ids)
    if from_file is not None:
        text = sys.stdin.read() if str(from_file) == "-" else from_file.read_text(encoding="utf-8")
        collected.extend(line.strip() for line in text.splitlines() if line.strip())
    if not collected:
        raise ValueError("No document ids given")
    return collected


def _resolve_all(query, ids: List[str]) -> List[str]:
    """Expand prefixes; unknown ids pass through so the batch reports them."""
    resolved = []
    for doc_id in ids:
        try:
            resolved.append(query.resolve(doc_id))
        except DocumentNotFound:
            resolved.append(doc_id)
    return resolved


def _report_batch(result: BatchResult, verb: str) -> None:
    for doc_id, message in result.messages.items():
        if doc_id in result.failed:
            typer.echo(f"✗ {doc_id}: {message}", err=True)
    typer.echo(f"✓ {verb} {len(result.succeeded)} of {len(result.outcomes)} document(s)")
    if not result.ok:
        raise typer.Exit(code=1)


# ============================================================================
# Shed lifecycle
# ============================================================================


@app.command()
def init(
    ctx: typer.Context,
    path: Path = typer.Argument(Path("."), help="Directory to initialize"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the shed"),
    force: bool = typer.Option(False, "--force", help="Re-initialize an existing shed"),
) -> None:
    """Create an empty shed (config, ledger, store and bundle directories)."""
    setup_logging(level=_log_level(ctx, "INFO"))
    try:
        with Shed.init(path, name=name, force=force) as shed:
            typer.echo(f"✓ Initialized datashed '{shed.config.metadata.name}' in {shed.root}")
    except _HANDLED as e:
        _fail(e)


# ============================================================================
# Import
# ============================================================================


def _candidates(
    sources: List[Path], pattern: str, text_field: str, ref_field: str
) -> Iterator[Candidate]:
    for source in sources:
        if source.is_dir():
            yield from iter_directory(source, pattern=pattern)
        elif source.suffix in (".jsonl", ".ndjson"):
            yield from iter_jsonl(source, text_field=text_field, ref_field=ref_field)
        elif source.is_file():
            yield Candidate(content=source.read_bytes(), source_ref=source.stem)
        else:
            raise FileNotFoundError(f"No such file or directory: {source}")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    sources: List[Path] = typer.Argument(..., help="Directories, text files or JSONL files"),
    pattern: str = typer.Option("**/*.txt", "--pattern", help="Glob for directory sources"),
    text_field: str = typer.Option("text", "--text-field", help="JSONL field holding the text"),
    ref_field: str = typer.Option("source_ref", "--ref-field", help="JSONL field holding the source ref"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads (0 = all CPUs)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Candidates per commit"),
    auto_promote: Optional[bool] = typer.Option(
        None, "--auto-promote/--no-auto-promote", help="Accepted documents become ready"
    ),
) -> None:
    """Import candidate documents into the shed."""
    overrides: Dict[str, Any] = {}
    if workers is not None:
        overrides["workers"] = workers
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if auto_promote is not None:
        overrides["auto_promote"] = auto_promote
    try:
        with _open(ctx, {"importer": overrides} if overrides else None) as shed:
            pipeline = shed.pipeline()
            candidates = _candidates(sources, pattern, text_field, ref_field)
            quiet = ctx.obj.get("quiet", False)
            with tqdm(desc="Importing", unit="doc", disable=quiet, file=sys.stderr) as bar:
                summary = pipeline.run(candidates, progress=lambda _outcome: bar.update(1))
    except _HANDLED as e:
        _fail(e)

    table = Table(title="Import Summary")
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for key in ("seen", "imported", "accepted", "rejected", "duplicates", "encoding_errors"):
        table.add_row(key, str(getattr(summary, key)))
    for reason, count in sorted(summary.rejections.items()):
        table.add_row(f"  rejected: {reason}", str(count))
    console.print(table)
    if summary.cancelled:
        console.print("[yellow]Import cancelled; finished batches are committed[/yellow]")


# ============================================================================
# Review
# ============================================================================


@app.command()
def promote(
    ctx: typer.Context,
    ids: List[str] = typer.Argument(None, help="Document ids or unique prefixes"),
    from_file: Optional[Path] = typer.Option(None, "--from-file", "-f", help="File with one id per line ('-' = stdin)"),
) -> None:
    """Approve pending documents for archival."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            resolved = _resolve_all(query, _read_ids(ids or [], from_file))
            result = shed.review().promote_many(resolved)
    except _HANDLED as e:
        _fail(e)
    _report_batch(result, "Promoted")


@app.command()
def discard(
    ctx: typer.Context,
    ids: List[str] = typer.Argument(None, help="Document ids or unique prefixes"),
    reason: str = typer.Option("review", "--reason", "-r", help="Why the documents are discarded"),
    from_file: Optional[Path] = typer.Option(None, "--from-file", "-f", help="File with one id per line ('-' = stdin)"),
) -> None:
    """Discard pending or ready documents."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            resolved = _resolve_all(query, _read_ids(ids or [], from_file))
            result = shed.review().discard_many(resolved, reason=reason)
    except _HANDLED as e:
        _fail(e)
    _report_batch(result, "Discarded")


@app.command()
def reinstate(
    ctx: typer.Context,
    ids: List[str] = typer.Argument(None, help="Document ids or unique prefixes"),
    from_file: Optional[Path] = typer.Option(None, "--from-file", "-f", help="File with one id per line ('-' = stdin)"),
) -> None:
    """Move discarded documents back to pending."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            resolved = _resolve_all(query, _read_ids(ids or [], from_file))
            result = shed.review().reinstate_many(resolved)
    except _HANDLED as e:
        _fail(e)
    _report_batch(result, "Reinstated")


@app.command()
def rate(
    ctx: typer.Context,
    ratings: Path = typer.Argument(..., help="CSV with id,rating[,comment] columns"),
) -> None:
    """Apply quality ratings (C/C- promote, I discards, P+/P/P- are skipped)."""
    try:
        pairs = read_ratings(ratings)
        with _open(ctx) as shed:
            query = shed.query()
            resolved = list(zip(_resolve_all(query, [p[0] for p in pairs]), [p[1] for p in pairs]))
            result = shed.review().apply_ratings(resolved)
    except _HANDLED as e:
        _fail(e)
    skipped = result.counts().get("skipped", 0)
    if skipped:
        typer.echo(f"  {skipped} document(s) skipped")
    _report_batch(result, "Rated")


# ============================================================================
# Archival
# ============================================================================


@app.command()
def seal(
    ctx: typer.Context,
    ids: List[str] = typer.Option(None, "--id", help="Restrict to these ids (repeatable)"),
    source_prefix: Optional[str] = typer.Option(None, "--source-prefix", help="Only matching source refs"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Only this detected language"),
    after: Optional[datetime] = typer.Option(None, "--after", help="Imported at or after (UTC)"),
    before: Optional[datetime] = typer.Option(None, "--before", help="Imported before (UTC)"),
    limit: Optional[int] = typer.Option(None, "--limit", help="At most this many documents"),
) -> None:
    """Seal ready documents into a reproducible bundle."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            selector = Selector(
                imported_after=_utc(after),
                imported_before=_utc(before),
                source_prefix=source_prefix,
                language=language,
                ids=frozenset(query.resolve(i) for i in ids) if ids else None,
                limit=limit,
            )
            record = shed.archiver().seal(selector)
    except _HANDLED as e:
        _fail(e)
    console.print(
        Panel(
            f"[bold green]✓ Sealed bundle {record.bundle_id}[/bold green]\n"
            f"Members: {len(record.members)}\n"
            f"Manifest digest: {record.manifest_digest}\n"
            f"Archive: {record.archive_path} ({record.size_bytes} bytes)",
            title="Seal",
        )
    )


@app.command()
def bundles(ctx: typer.Context) -> None:
    """List committed bundles."""
    try:
        with _open(ctx) as shed:
            records = shed.query().bundles()
    except _HANDLED as e:
        _fail(e)
    table = Table(title="Bundles")
    table.add_column("Bundle", style="cyan", no_wrap=True)
    table.add_column("Created", style="magenta")
    table.add_column("Members", justify="right", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Archive", style="yellow")
    for record in records:
        table.add_row(
            record.bundle_id,
            record.created_at.isoformat(),
            str(len(record.members)),
            str(record.size_bytes),
            record.archive_path,
        )
    console.print(table)


@app.command("verify-bundle")
def verify_bundle(
    ctx: typer.Context,
    bundle_ids: List[str] = typer.Argument(None, help="Bundles to verify (default: all)"),
    quarantine: bool = typer.Option(False, "--quarantine", help="Quarantine archives that fail"),
) -> None:
    """Re-verify committed bundle archives against their records."""
    failures = 0
    try:
        with _open(ctx) as shed:
            archiver = shed.archiver()
            targets = bundle_ids or [b.bundle_id for b in shed.query().bundles()]
            for bundle_id in targets:
                try:
                    manifest = archiver.verify_bundle(bundle_id, quarantine=quarantine)
                    typer.echo(f"✓ {bundle_id}: {len(manifest.members)} members ok")
                except DataShedError as e:
                    failures += 1
                    typer.echo(f"✗ {bundle_id}: {e}", err=True)
    except _HANDLED as e:
        _fail(e)
    if failures:
        raise typer.Exit(code=1)


@app.command()
def restore(
    ctx: typer.Context,
    archive: Path = typer.Argument(..., help="Bundle archive (.tar.gz)"),
) -> None:
    """Verify a bundle archive and restore its members into the content store."""
    try:
        with _open(ctx) as shed:
            ids = restore_bundle(archive, shed.store)
    except _HANDLED as e:
        _fail(e)
    typer.echo(f"✓ Restored {len(ids)} document(s) from {archive}")


# ============================================================================
# Read-only views
# ============================================================================


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    status: Optional[Status] = typer.Option(None, "--status", "-s", help="Only this status"),
    source_prefix: Optional[str] = typer.Option(None, "--source-prefix", help="Only matching source refs"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Only this detected language"),
    bundle: Optional[str] = typer.Option(None, "--bundle", help="Only members of this bundle"),
    offset: int = typer.Option(0, "--offset", help="Skip this many rows"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="At most this many rows"),
    as_json: bool = typer.Option(False, "--json", help="JSON lines instead of a table"),
) -> None:
    """List documents."""
    try:
        with _open(ctx) as shed:
            records = shed.query().list(
                status=status,
                source_prefix=source_prefix,
                language=language,
                bundle_id=bundle,
                offset=offset,
                limit=limit,
            )
    except _HANDLED as e:
        _fail(e)
    if as_json:
        for record in records:
            typer.echo(json.dumps(record.to_row(), sort_keys=True))
        return
    table = Table(title=f"Documents ({len(records)})")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Status", style="green")
    table.add_column("Source", style="magenta")
    table.add_column("Lang")
    table.add_column("Bytes", justify="right")
    for record in records:
        table.add_row(
            record.id[:16],
            record.status.value,
            record.source_ref,
            record.detected_language or "-",
            str(record.length_bytes),
        )
    console.print(table)


@app.command()
def show(
    ctx: typer.Context,
    doc_id: str = typer.Argument(..., help="Document id or unique prefix"),
) -> None:
    """Display the ledger record of one document."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            record = query.get(query.resolve(doc_id))
    except _HANDLED as e:
        _fail(e)
    for key, value in record.to_row().items():
        typer.echo(f"  {key}: {value or '-'}")


@app.command()
def cat(
    ctx: typer.Context,
    doc_id: str = typer.Argument(..., help="Document id or unique prefix"),
) -> None:
    """Write the stored bytes of one document to stdout."""
    try:
        with _open(ctx) as shed:
            query = shed.query()
            data = query.read_bytes(query.resolve(doc_id))
    except _HANDLED as e:
        _fail(e)
    stdout = typer.get_binary_stream("stdout")
    stdout.write(data)
    stdout.flush()


@app.command()
def grep(
    ctx: typer.Context,
    pattern: str = typer.Argument(..., help="Regular expression to search for"),
    ignore_case: bool = typer.Option(False, "--ignore-case", "-i", help="Case-insensitive search"),
    invert: bool = typer.Option(False, "--invert-match", help="Keep documents that do not match"),
    max_bytes: Optional[int] = typer.Option(
        None, "--max-bytes", "-n", min=0, help="Search only the first NUM bytes (0: everything)"
    ),
    status: Optional[Status] = typer.Option(None, "--status", "-s", help="Only this status"),
    source_prefix: Optional[str] = typer.Option(None, "--source-prefix", help="Only matching source refs"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Only this detected language"),
    bundle: Optional[str] = typer.Option(None, "--bundle", help="Only members of this bundle"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the sub-index CSV here"),
    append: bool = typer.Option(False, "--append", "-a", help="Append to an existing --output file"),
) -> None:
    """Find documents whose text matches a pattern; print them as a CSV sub-index."""
    if append and output is None:
        _fail(ValueError("--append requires --output"))
    try:
        with _open(ctx) as shed:
            query = shed.query()
            quiet = ctx.obj.get("quiet", False)
            with tqdm(total=len(shed.ledger), desc="Searching", unit="doc", disable=quiet, file=sys.stderr) as bar:
                records = query.grep(
                    pattern,
                    ignore_case=ignore_case,
                    invert=invert,
                    max_bytes=max_bytes,
                    status=status,
                    source_prefix=source_prefix,
                    language=language,
                    bundle_id=bundle,
                    progress=lambda _id: bar.update(1),
                )
        if output is None:
            _write_subindex(sys.stdout, records, header=True)
        else:
            header = not (append and output.exists() and output.stat().st_size > 0)
            with output.open("a" if append else "w", encoding="utf-8", newline="") as handle:
                _write_subindex(handle, records, header=header)
            typer.echo(f"✓ {len(records)} document(s) written to {output}", err=True)
    except _HANDLED as e:
        _fail(e)


def _write_subindex(handle, records, *, header: bool) -> None:
    writer = csv.DictWriter(handle, fieldnames=list(LEDGER_FIELDS), lineterminator="\n")
    if header:
        writer.writeheader()
    for record in records:
        writer.writerow(record.to_row())


@app.command()
def summary(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """Show document counts per status, language, warning and rejection reason."""
    try:
        with _open(ctx) as shed:
            result = shed.query().summary()
    except _HANDLED as e:
        _fail(e)
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
        return
    table = Table(title="Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("documents", str(result.documents))
    for status, count in result.by_status.items():
        table.add_row(f"  {status}", str(count))
    table.add_row("bytes", str(result.bytes_total))
    table.add_row("bundles", str(result.bundles))
    for language, count in sorted(result.languages.items()):
        table.add_row(f"language {language}", str(count))
    for warning, count in sorted(result.warnings.items()):
        table.add_row(f"warning {warning}", str(count))
    for reason, count in sorted(result.rejections.items()):
        table.add_row(f"rejected {reason}", str(count))
    console.print(table)


# ============================================================================
# Consistency
# ============================================================================


def _run_check(ctx: typer.Context, mode: Mode) -> None:
    try:
        with _open(ctx) as shed:
            checker = shed.checker()
            quiet = ctx.obj.get("quiet", False)
            with tqdm(total=len(shed.ledger), desc="Checking", unit="doc", disable=quiet, file=sys.stderr) as bar:
                report = checker.check(mode, progress=lambda _id: bar.update(1))
    except _HANDLED as e:
        _fail(e)
    for item in report.missing:
        typer.echo(f"missing:   {item.doc_id} ({item.status})")
    for item in report.changed:
        typer.echo(f"changed:   {item.doc_id} ({item.check})")
    for item in report.untracked:
        typer.echo(f"untracked: {item.path} ({item.reason})")
    if report.ok:
        typer.echo(f"✓ {report.checked} document(s) consistent ({mode.value})")
    else:
        raise typer.Exit(code=1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show missing and untracked files (existence checks only)."""
    _run_check(ctx, Mode.PERMISSIVE)


@app.command()
def verify(
    ctx: typer.Context,
    mode: Mode = typer.Option(Mode.STRICT, "--mode", "-m", help="permissive, strict or pedantic"),
) -> None:
    """Verify stored documents against the ledger."""
    _run_check(ctx, mode)


@app.command()
def clean(
    ctx: typer.Context,
    dry_run: bool = typer.Option(True, "--dry-run/--apply", help="Dry-run mode (default: true)"),
) -> None:
    """Remove files no ledger row or bundle record references."""
    try:
        with _open(ctx) as shed:
            removed = shed.checker().clean(dry_run=dry_run)
    except _HANDLED as e:
        _fail(e)
    action = "would remove" if dry_run else "removed"
    for item in removed:
        typer.echo(f"  {item.path}")
    typer.echo(f"✓ {action} {len(removed)} file(s)")


# ============================================================================
# Config
# ============================================================================


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Print the effective configuration (file < env < CLI)."""
    try:
        with _open(ctx) as shed:
            cfg = shed.config
    except _HANDLED as e:
        _fail(e)
    data = json.dumps(cfg.model_dump(mode="json"), indent=2)
    if raw:
        typer.echo(data)
    else:
        console.print(Panel(data, title=f"Config {cfg.config_hash()[:8]}", expand=False))


@config_app.command("validate")
def config_validate(
    ctx: typer.Context,
    path: Optional[Path] = typer.Argument(None, help="Config file (default: the shed's datashed.yaml)"),
) -> None:
    """Validate a config file."""
    try:
        target = path or discover_root(ctx.obj.get("shed_dir")) / "datashed.yaml"
        validate_config_file(target)
    except _HANDLED as e:
        typer.echo(f"✗ Invalid: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✓ Config valid: {target}")


@config_app.command("schema")
def config_schema(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save schema to file"),
) -> None:
    """Export the JSON Schema of the configuration."""
    schema_data = json.dumps(export_config_schema(), indent=2)
    if output:
        output.write_text(schema_data + "\n", encoding="utf-8")
        typer.echo(f"✓ Schema written to {output}")
    else:
        typer.echo(schema_data)


if __name__ == "__main__":
    app()
