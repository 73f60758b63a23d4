"""TraceVault CLI application with Typer."""

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any, cast, get_args

import click
import typer

from tracevault import __version__
from tracevault.audit.ledger import SignatureMethod
from tracevault.bootstrap import bootstrap_application
from tracevault.config import get_settings, set_settings
from tracevault.errors import (
    AuthenticationError,
    AuthorizationError,
    TraceVaultError,
    ValidationError,
)
from tracevault.utils.cli_output import json_response

app = typer.Typer(
    name="tracevault",
    help="Tamper-evident audit ledger and traceability snapshot store",
    add_completion=True,
    no_args_is_help=True,
)

TokenOption = Annotated[
    str | None,
    typer.Option("--token", envvar="TRACEVAULT_TOKEN", help="Identity token (see 'token issue')"),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
SIGNATURE_METHODS: tuple[str, ...] = get_args(SignatureMethod)

_EXIT_CODES: dict[type[TraceVaultError], int] = {
    ValidationError: 2,
    AuthenticationError: 3,
    AuthorizationError: 3,
}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"TraceVault version {__version__}")
        raise typer.Exit()


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Render domain errors as red messages with a non-zero exit code."""
    try:
        yield
    except TraceVaultError as exc:
        code = next(
            (value for kind, value in _EXIT_CODES.items() if isinstance(exc, kind)),
            1,
        )
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=code) from exc


def _parse_json_object(value: str | None, option: str) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{option} must be valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise typer.BadParameter(f"{option} must be a JSON object")
    return parsed


def _load_payload(path: Path, raw: bool) -> Any:
    if not path.is_file():
        raise typer.BadParameter(f"File not found: {path}")
    data = path.read_bytes()
    if raw:
        return data
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"{path} is not valid JSON (pass --raw for binary files)") from exc


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", help="Override config directory (key material)"),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            click_type=click.Choice(LOG_LEVELS, case_sensitive=False),
            help="Logging level",
        ),
    ] = "WARNING",
) -> None:
    """TraceVault - audit chain, signatures, and artifact history."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Update settings with CLI flags
    settings = get_settings()
    if data_dir:
        settings.data_dir = data_dir
    if config_dir:
        settings.config_dir = config_dir
    set_settings(settings)


# Audit subcommand
audit_app = typer.Typer(help="Hash-chained audit ledger")
app.add_typer(audit_app, name="audit")


@audit_app.command("append")
def audit_append(
    action_type: Annotated[str, typer.Argument(help="Action tag, e.g. testcase.updated")],
    entity_type: Annotated[str, typer.Argument(help="Kind of the affected resource")],
    entity_id: Annotated[str | None, typer.Option("--entity-id", help="Affected resource id")] = None,
    old_values: Annotated[str | None, typer.Option("--old", help="Prior state as JSON")] = None,
    new_values: Annotated[str | None, typer.Option("--new", help="New state as JSON")] = None,
    metadata: Annotated[str | None, typer.Option("--metadata", help="Extra context as JSON")] = None,
    token: TokenOption = None,
    json_output: JsonOption = False,
) -> None:
    """Append an audit record on behalf of the token's subject."""
    old = _parse_json_object(old_values, "--old")
    new = _parse_json_object(new_values, "--new")
    extra = _parse_json_object(metadata, "--metadata")

    container = bootstrap_application()
    with _cli_errors():
        entry = {
            "action_type": action_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "old_values": old,
            "new_values": new,
            "metadata": extra,
        }
        result = container.audit_service.log_action(token, entry)

    if json_output:
        typer.echo(json_response("audit_append", 1, ok=True, **result.model_dump()))
    else:
        typer.secho(f"Appended {result.id} ({result.hash})", fg=typer.colors.GREEN)


@audit_app.command("show")
def audit_show(
    entity_type: Annotated[str | None, typer.Option("--entity-type")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity-id")] = None,
    action_type: Annotated[str | None, typer.Option("--action-type")] = None,
    date_from: Annotated[str | None, typer.Option("--from", help="Inclusive ISO-8601 lower bound")] = None,
    date_to: Annotated[str | None, typer.Option("--to", help="Inclusive ISO-8601 upper bound")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Maximum entries")] = None,
    token: TokenOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show audit records, newest first."""
    container = bootstrap_application()
    with _cli_errors():
        filters = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action_type": action_type,
            "date_from": date_from,
            "date_to": date_to,
            "limit": limit or container.settings.query_limit,
        }
        records = container.audit_service.query(token, filters)

    if json_output:
        typer.echo(
            json_response(
                "audit_log",
                1,
                total_entries=len(records),
                entries=[record.model_dump(mode="json") for record in records],
            )
        )
        return

    if not records:
        typer.secho("No audit records found", fg=typer.colors.YELLOW)
        return
    for record in records:
        signed = " [signed]" if record.signature else ""
        typer.echo(
            f"{record.ts_iso} | {record.id} | {record.action_type} | "
            f"{record.entity_type}:{record.entity_id or '-'}{signed}"
        )


@audit_app.command("verify")
def audit_verify(
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Records to examine")] = None,
    token: TokenOption = None,
    json_output: JsonOption = False,
) -> None:
    """Verify the hash chain over the most recent records."""
    container = bootstrap_application()
    with _cli_errors():
        result = container.audit_service.verify(token, limit)

    if json_output:
        typer.echo(json_response("chain_verification", 1, **result.model_dump()))
    elif result.ok:
        typer.secho(f"Audit chain is valid ({result.count} records)", fg=typer.colors.GREEN)
    else:
        typer.secho(
            f"Audit chain broken at {result.break_at}: {result.reason}",
            fg=typer.colors.RED,
            err=True,
        )
    if not result.ok:
        raise typer.Exit(code=1)


@audit_app.command("sign")
def audit_sign(
    audit_id: Annotated[str, typer.Argument(help="Audit record id")],
    reason: Annotated[str | None, typer.Option("--reason", help="Meaning of the signature")] = None,
    method: Annotated[
        str,
        typer.Option(
            "--method",
            click_type=click.Choice(SIGNATURE_METHODS),
            help="How the signer re-authenticated",
        ),
    ] = "password-reentry",
    token: TokenOption = None,
    json_output: JsonOption = False,
) -> None:
    """Attach an electronic signature (requires a freshly issued token)."""
    container = bootstrap_application()
    if container.ceremony.uses_ephemeral_key:
        typer.secho(
            "Warning: no signing secret configured; this signature cannot be verified "
            "after the process exits",
            fg=typer.colors.YELLOW,
            err=True,
        )
    with _cli_errors():
        signature = container.audit_service.sign(
            token, audit_id, reason=reason, method=cast(SignatureMethod, method)
        )

    if json_output:
        typer.echo(json_response("audit_signature", 1, ok=True, signature=signature.model_dump()))
    else:
        typer.secho(
            f"Signed {audit_id} as {signature.signer_email} at {signature.signed_at}",
            fg=typer.colors.GREEN,
        )


@audit_app.command("check-signature")
def audit_check_signature(
    audit_id: Annotated[str, typer.Argument(help="Audit record id")],
    json_output: JsonOption = False,
) -> None:
    """Recompute a record's signature with the configured secret."""
    container = bootstrap_application()
    with _cli_errors():
        valid = container.audit_service.verify_signature(audit_id)

    if json_output:
        typer.echo(json_response("signature_check", 1, audit_id=audit_id, valid=valid))
    elif valid:
        typer.secho(f"Signature on {audit_id} is valid", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Signature on {audit_id} is missing or invalid", fg=typer.colors.RED, err=True)
    if not valid:
        raise typer.Exit(code=1)


# Snapshot subcommand
snapshot_app = typer.Typer(help="Checksummed artifact snapshots")
app.add_typer(snapshot_app, name="snapshot")


@snapshot_app.command("upload")
def snapshot_upload(
    scope_id: Annotated[str, typer.Argument(help="Scope (invocation/batch) id")],
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    payload_file: Annotated[Path, typer.Argument(help="JSON file (or any file with --raw)")],
    raw: Annotated[bool, typer.Option("--raw", help="Store file bytes verbatim")] = False,
    expiry: Annotated[
        int | None, typer.Option("--expiry", help="Retrieval URL lifetime in seconds")
    ] = None,
    archival: Annotated[
        bool, typer.Option("--archival", help="Use the archival URL lifetime")
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Upload a snapshot without recording history."""
    payload = _load_payload(payload_file, raw)
    container = bootstrap_application()
    if expiry is None and archival:
        expiry = container.settings.archival_url_expiry_seconds
    with _cli_errors():
        snapshot = container.snapshot_store.upload_snapshot(scope_id, entity_id, payload, expiry)

    if json_output:
        typer.echo(json_response("snapshot", 1, **snapshot.model_dump()))
    else:
        typer.secho(f"Stored {snapshot.storage_path}", fg=typer.colors.GREEN)
        typer.echo(f"  sha256: {snapshot.checksum}")
        typer.echo(f"  url:    {snapshot.retrieval_url}")


@snapshot_app.command("verify")
def snapshot_verify(
    storage_path: Annotated[str, typer.Argument(help="Snapshot storage path")],
    json_output: JsonOption = False,
) -> None:
    """Re-hash a stored snapshot and compare with its recorded checksum."""
    container = bootstrap_application()
    with _cli_errors():
        valid = container.snapshot_store.verify(storage_path)

    if json_output:
        typer.echo(json_response("snapshot_check", 1, storage_path=storage_path, valid=valid))
    elif valid:
        typer.secho(f"Checksum matches for {storage_path}", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Checksum mismatch for {storage_path}", fg=typer.colors.RED, err=True)
    if not valid:
        raise typer.Exit(code=1)


@snapshot_app.command("list")
def snapshot_list(
    scope_id: Annotated[str, typer.Argument(help="Scope id")],
    json_output: JsonOption = False,
) -> None:
    """List snapshot paths stored under a scope."""
    container = bootstrap_application()
    with _cli_errors():
        paths = container.snapshot_store.list_scope(scope_id)

    if json_output:
        typer.echo(json_response("snapshot_list", 1, scope_id=scope_id, paths=paths))
        return
    if not paths:
        typer.secho(f"No snapshots for scope {scope_id}", fg=typer.colors.YELLOW)
    for path in paths:
        typer.echo(path)


# History subcommand
history_app = typer.Typer(help="Per-entity snapshot history")
app.add_typer(history_app, name="history")


@history_app.command("record")
def history_record(
    scope_id: Annotated[str, typer.Argument(help="Scope (invocation/batch) id")],
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    payload_file: Annotated[Path, typer.Argument(help="JSON file (or any file with --raw)")],
    raw: Annotated[bool, typer.Option("--raw", help="Store file bytes verbatim")] = False,
    archival: Annotated[
        bool, typer.Option("--archival", help="Use the archival URL lifetime")
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Upload a snapshot and append it to the entity's history."""
    payload = _load_payload(payload_file, raw)
    container = bootstrap_application()
    expiry = container.settings.archival_url_expiry_seconds if archival else None
    with _cli_errors():
        result = container.traceability_service.capture(scope_id, entity_id, payload, expiry)

    if json_output:
        typer.echo(json_response("history_record", 1, **result.model_dump()))
    elif result.history is None:
        typer.secho(
            f"History entry for {entity_id} / {scope_id} already exists; skipped (relaxed mode)",
            fg=typer.colors.YELLOW,
        )
    else:
        typer.secho(f"Recorded {result.history.id}", fg=typer.colors.GREEN)


@history_app.command("list")
def history_list(
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    oldest_first: Annotated[bool, typer.Option("--oldest-first", help="Chronological order")] = False,
    limit: Annotated[int | None, typer.Option("--limit", "-n")] = None,
    start_after: Annotated[
        str | None, typer.Option("--start-after", help="Resume after this entry id")
    ] = None,
    token: TokenOption = None,
    json_output: JsonOption = False,
) -> None:
    """List an entity's history entries."""
    container = bootstrap_application()
    with _cli_errors():
        entries = container.traceability_service.history(
            token,
            entity_id,
            newest_first=not oldest_first,
            limit=limit,
            start_after=start_after,
        )

    if json_output:
        typer.echo(
            json_response(
                "history",
                1,
                entity_id=entity_id,
                entries=[entry.model_dump() for entry in entries],
            )
        )
        return
    if not entries:
        typer.secho(f"No history for {entity_id}", fg=typer.colors.YELLOW)
    for entry in entries:
        typer.echo(f"{entry.snapshot_at} | {entry.id} | {entry.checksum}")


@history_app.command("diff")
def history_diff(
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    left_id: Annotated[str, typer.Argument(help="Older history entry id")],
    right_id: Annotated[str, typer.Argument(help="Newer history entry id")],
) -> None:
    """Show a unified diff between two snapshots of an entity."""
    container = bootstrap_application()
    with _cli_errors():
        diff = container.traceability_service.diff(entity_id, left_id, right_id)
    if not diff:
        typer.secho("Snapshots are identical", fg=typer.colors.GREEN)
        return
    typer.echo(diff, nl=False)


# Token subcommand
token_app = typer.Typer(help="Identity tokens for local use")
app.add_typer(token_app, name="token")


@token_app.command("issue")
def token_issue(
    subject_id: Annotated[str, typer.Argument(help="Subject identifier")],
    email: Annotated[str | None, typer.Option("--email")] = None,
    admin: Annotated[bool, typer.Option("--admin", help="Grant the admin claim")] = False,
    auth_age: Annotated[
        int,
        typer.Option("--auth-age", help="Seconds since the authentication event (testing)"),
    ] = 0,
) -> None:
    """Issue an identity token; re-issue immediately before signing."""
    container = bootstrap_application()
    claims: dict[str, Any] = {"admin": True} if admin else {}
    token = container.identity.issue_token(
        subject_id,
        email,
        claims,
        auth_time=int(time.time()) - max(0, auth_age),
    )
    typer.echo(token)


if __name__ == "__main__":
    app()
