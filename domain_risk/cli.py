from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import typer

from .models.config import ScanConfig, ScanKind, SourceConfig, StoreMode
from .pipeline.context import ScanContext
from .pipeline.runner import ScanError, ScanService, run_report_sync
from .reporting.markdown import build_summary

app = typer.Typer(add_completion=False)


class JsonFormatter(logging.Formatter):
    RESERVED = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message"}

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "time": datetime.now(timezone.utc).isoformat(),
        }
        for key, value in record.__dict__.items():
            if key not in self.RESERVED:
                payload[key] = value
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler], force=True)


def build_config(
    resolver: str = "8.8.8.8",
    store: StoreMode = StoreMode.sqlite,
    store_path: str = "./output/results.db",
    retries: int = 0,
    chaos_key: Optional[str] = None,
    shodan_key: Optional[str] = None,
    otx_key: Optional[str] = None,
    abusech_key: Optional[str] = None,
    isc_key: Optional[str] = None,
) -> ScanConfig:
    config = ScanConfig(resolver=resolver, store=store, store_path=store_path, retries=retries)
    keys = {
        ScanKind.chaos: chaos_key,
        ScanKind.shodan: shodan_key,
        ScanKind.otx: otx_key,
        ScanKind.abusech: abusech_key,
        ScanKind.isc: isc_key,
    }
    updates = {}
    for kind, key in keys.items():
        if key:
            current: SourceConfig = config.source(kind)
            updates[kind.value] = current.model_copy(update={"api_key": key})
    return config.model_copy(update=updates)


def _emit(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _with_service(config: ScanConfig, action: Callable[[ScanService], Any]) -> dict:
    """Run ``action`` against a fresh service and return its output with the ledger totals."""

    async def _run() -> Any:
        context = ScanContext.from_config(config)
        try:
            outcome = action(ScanService(context))
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
        finally:
            await context.close()
        return outcome, context.ledger.totals()

    try:
        outcome, totals = asyncio.run(_run())
    except ScanError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1)
    return {"result": outcome, "ledger_totals": totals}


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


RESOLVER = typer.Option("8.8.8.8", "--resolver", help="Upstream DNS resolver address.")
STORE = typer.Option(StoreMode.sqlite, "--store")
STORE_PATH = typer.Option("./output/results.db", "--store-path")
RETRIES = typer.Option(0, "--retries", help="HTTP retries for external sources.")
CHAOS_KEY = typer.Option(None, "--chaos-key", envvar="CHAOS_API_KEY")
SHODAN_KEY = typer.Option(None, "--shodan-key", envvar="SHODAN_API_KEY")
OTX_KEY = typer.Option(None, "--otx-key", envvar="OTX_API_KEY")
ABUSECH_KEY = typer.Option(None, "--abusech-key", envvar="ABUSECH_API_KEY")
ISC_KEY = typer.Option(None, "--isc-key", envvar="ISC_API_KEY")
VERBOSE = typer.Option(False, "--verbose", "-v")


@app.command("scan-dns")
def scan_dns(
    domain: str = typer.Option(..., "--domain"),
    resolver: str = RESOLVER,
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
    verbose: bool = VERBOSE,
) -> None:
    """Validate SPF, DKIM, DMARC and DNSSEC for a domain and store the result."""
    setup_logging(verbose)
    config = build_config(resolver=resolver, store=store, store_path=store_path)
    output = _with_service(config, lambda service: service.scan_dns(domain))
    output["result"] = _dump(output["result"])
    _emit(output)


@app.command()
def scan(
    kind: ScanKind = typer.Option(..., "--kind"),
    domain: str = typer.Option(..., "--domain"),
    dns_scan_id: str = typer.Option(..., "--dns-scan-id", help="Id of an earlier DNS scan of the same domain."),
    resolver: str = RESOLVER,
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
    retries: int = RETRIES,
    chaos_key: Optional[str] = CHAOS_KEY,
    shodan_key: Optional[str] = SHODAN_KEY,
    otx_key: Optional[str] = OTX_KEY,
    abusech_key: Optional[str] = ABUSECH_KEY,
    isc_key: Optional[str] = ISC_KEY,
    verbose: bool = VERBOSE,
) -> None:
    """Run one scan kind against a domain, attached to an existing DNS scan."""
    setup_logging(verbose)
    config = build_config(resolver, store, store_path, retries, chaos_key, shodan_key, otx_key, abusech_key, isc_key)
    output = _with_service(config, lambda service: service.run_scan(kind, domain, dns_scan_id))
    output["result"] = _dump(output["result"])
    _emit(output)


@app.command()
def report(
    domain: str = typer.Option(..., "--domain"),
    resolver: str = RESOLVER,
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
    retries: int = RETRIES,
    chaos_key: Optional[str] = CHAOS_KEY,
    shodan_key: Optional[str] = SHODAN_KEY,
    otx_key: Optional[str] = OTX_KEY,
    abusech_key: Optional[str] = ABUSECH_KEY,
    isc_key: Optional[str] = ISC_KEY,
    markdown: bool = typer.Option(False, "--markdown", help="Print a Markdown summary instead of JSON."),
    verbose: bool = VERBOSE,
) -> None:
    """Scan a domain with every configured source and store a scored report."""
    setup_logging(verbose)
    config = build_config(resolver, store, store_path, retries, chaos_key, shodan_key, otx_key, abusech_key, isc_key)
    try:
        result = run_report_sync(config, domain)
    except ScanError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1)
    if markdown:
        typer.echo(build_summary(result["report"]))
        return
    _emit(result)


@app.command()
def score(
    domain: str = typer.Option(..., "--domain"),
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
    verbose: bool = VERBOSE,
) -> None:
    """Recompute the risk score from the latest stored result of each kind."""
    setup_logging(verbose)
    config = build_config(store=store, store_path=store_path)
    output = _with_service(config, lambda service: service.calculate_risk_score(domain))
    output["result"] = _dump(output["result"])
    _emit(output)


@app.command()
def history(
    kind: ScanKind = typer.Option(ScanKind.dns, "--kind"),
    domain: str = typer.Option(..., "--domain"),
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
) -> None:
    """List stored results of one kind for a domain, newest first."""
    setup_logging()
    config = build_config(store=store, store_path=store_path)
    output = _with_service(config, lambda service: service.history(kind, domain))
    output["result"] = _dump(output["result"])
    _emit(output)


@app.command("show-report")
def show_report(
    report_id: Optional[str] = typer.Option(None, "--report-id"),
    domain: Optional[str] = typer.Option(None, "--domain", help="List reports for a domain instead."),
    store: StoreMode = STORE,
    store_path: str = STORE_PATH,
    markdown: bool = typer.Option(False, "--markdown"),
) -> None:
    """Show one stored report, or list stored reports."""
    setup_logging()
    config = build_config(store=store, store_path=store_path)
    if report_id:
        output = _with_service(config, lambda service: service.get_report(report_id))
        if markdown:
            typer.echo(build_summary(output["result"].model_dump(mode="json")))
            return
    else:
        output = _with_service(config, lambda service: service.list_reports(domain))
    output["result"] = _dump(output["result"])
    _emit(output)


if __name__ == "__main__":
    app()
