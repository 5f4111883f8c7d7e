"""CLI entrypoint for Knowledge Hub."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="khub", help="Knowledge Hub command-line interface")
sources_app = typer.Typer(name="sources", help="Manage connected sources")
jobs_app = typer.Typer(name="jobs", help="Inspect and cancel ingest jobs")
app.add_typer(sources_app, name="sources")
app.add_typer(jobs_app, name="jobs")

DEFAULT_HOST = "http://127.0.0.1:5173"
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}

HostOption = typer.Option(None, "--host", help="Override backend host")
TenantOption = typer.Option(None, "--tenant", help="Tenant id sent as X-Tenant-Id")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("KH_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _headers(tenant: Optional[str]) -> dict[str, str]:
    tenant = tenant or os.environ.get("KH_TENANT")
    return {"X-Tenant-Id": tenant} if tenant else {}


def _request(
    method: str,
    path: str,
    host: Optional[str] = None,
    tenant: Optional[str] = None,
    **kwargs,
) -> requests.Response:
    url = f"{_resolve_host(host)}{path}"
    resp = requests.request(method, url, timeout=60, headers=_headers(tenant), **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def sync(
    source_id: str = typer.Argument(..., help="Source to ingest"),
    wait: bool = typer.Option(False, "--wait", help="Poll until the job reaches a terminal status"),
    interval: float = typer.Option(2.0, "--interval", help="Seconds between polls with --wait"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Queue an ingest run for a source."""
    job = _request("POST", "/ingest", host=host, tenant=tenant, json={"source_id": source_id}).json()
    while wait and job["status"] not in TERMINAL_STATUSES:
        time.sleep(interval)
        job = _request("GET", f"/jobs/{job['id']}", host=host, tenant=tenant).json()
    _echo(job)


@jobs_app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job identifier"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Show job status and stats."""
    _echo(_request("GET", f"/jobs/{job_id}", host=host, tenant=tenant).json())


@jobs_app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job identifier"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Request cancellation; running units stop at their next batch boundary."""
    _echo(_request("POST", f"/jobs/{job_id}/cancel", host=host, tenant=tenant).json())


@app.command()
def query(
    q: str = typer.Argument(..., help="Query text"),
    k: int = typer.Option(6, "--k", help="Number of results to return"),
    workspace: Optional[str] = typer.Option(None, "--workspace", help="Only chunks from this workspace label"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Query the retrieval index."""
    payload: dict[str, object] = {"query": q, "k": k}
    if workspace:
        payload["filters"] = {"workspace_label": workspace}
    _echo(_request("POST", "/query", host=host, tenant=tenant, json=payload).json())


@app.command()
def orphans(
    dry_run: bool = typer.Option(True, "--dry-run/--apply", help="Report only, or delete what is found"),
    keep_documents: bool = typer.Option(False, "--keep-documents", help="Leave orphaned document rows"),
    stale_vectors: bool = typer.Option(False, "--stale-vectors", help="Also purge vectors without chunk rows"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Limit to one tenant"),
    host: Optional[str] = HostOption,
) -> None:
    """Find and clean up chunks whose source no longer exists."""
    params = {"tenant": tenant} if tenant else None
    result = _request(
        "POST",
        "/orphans/reconcile",
        host=host,
        params=params,
        json={"dry_run": dry_run, "delete_documents": not keep_documents},
    ).json()
    report = result["report"]
    typer.echo(
        f"Found {report['chunk_count']} orphaned chunk(s) in {len(report['groups'])} document(s); "
        f"{len(report['document_ids'])} orphaned document(s)."
    )
    for group in report["groups"]:
        typer.echo(f"  {group['document_id']} ({group['tenant_id']}): {len(group['chunk_ids'])} chunk(s)")
    if dry_run:
        typer.echo("Dry run, nothing deleted. Re-run with --apply to delete.")
    else:
        typer.echo(
            f"Deleted {result['deleted_vectors']} vector(s), {result['deleted_chunks']} chunk(s), "
            f"{result['deleted_documents']} document(s)."
        )
    if stale_vectors:
        purge = _request(
            "POST", "/vectors/stale/purge", host=host, params=params, json={"dry_run": dry_run}
        ).json()
        typer.echo(f"Stale vectors: found {purge['found']}, deleted {purge['deleted']}.")


@app.command()
def reindex(
    document_id: str = typer.Argument(..., help="Document to rechunk and re-embed"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Queue a reindex for one document."""
    _echo(_request("POST", f"/documents/{document_id}/reindex", host=host, tenant=tenant).json())


@sources_app.command("list")
def list_sources(
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """List registered sources."""
    _echo(_request("GET", "/sources", host=host, tenant=tenant).json())


@sources_app.command("add")
def add_source(
    uri: str = typer.Argument(..., help="Filesystem path or URI"),
    source_type: str = typer.Option("folder", "--type", help="Registered source type"),
    label: Optional[str] = typer.Option(None, "--label", help="Friendly label"),
    workspace: Optional[str] = typer.Option(None, "--workspace", help="Workspace label for visibility"),
    scope: str = typer.Option("organization", "--scope", help="organization, workspace or private"),
    include: Optional[str] = typer.Option(None, "--include", help="Include glob"),
    exclude: Optional[str] = typer.Option(None, "--exclude", help="Exclude glob"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Register a source."""
    if source_type == "folder" and "://" not in uri:
        uri = str(Path(uri).expanduser())
    payload = {
        "source_type": source_type,
        "uri": uri,
        "label": label,
        "scope": scope,
        "workspace_label": workspace,
        "include_glob": include,
        "exclude_glob": exclude,
    }
    _echo(_request("POST", "/sources", host=host, tenant=tenant, json=payload).json())


@sources_app.command("remove")
def remove_source(
    source_id: str = typer.Argument(..., help="Source identifier"),
    host: Optional[str] = HostOption,
    tenant: Optional[str] = TenantOption,
) -> None:
    """Remove a registered source; its documents become orphans."""
    _request("DELETE", f"/sources/{source_id}", host=host, tenant=tenant)
    _echo({"status": "ok"})


if __name__ == "__main__":
    app()
