import asyncio
import json
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import httpx
import typer
from rich.console import Console
from rich.table import Table

from xssprobe.core.config import ScanConfig, TargetRule, settings
from xssprobe.core.exceptions import GenerationError, InvalidConfigError
from xssprobe.core.models import Context, ContextType, Environment, VulnClass
from xssprobe.core.session import ScanSession
from xssprobe.reporting.notifier import LoggingSink, WebhookSink
from xssprobe.tools.payloads.catalog import PayloadCatalog
from xssprobe.tools.payloads.generator import VariantGenerator
from xssprobe.tools.waf.bypass import validate_bypass
from xssprobe.tools.waf.encodings import EncodingCodec
from xssprobe.tools.waf.fingerprinter import WAF_SIGNATURES

CONTEXT_SETTINGS = dict(allow_interspersed_args=True)
app = typer.Typer(context_settings=CONTEXT_SETTINGS, add_completion=False)
console = Console()


def _load_config(config_path: Optional[Path], target: str) -> ScanConfig:
    if config_path is not None:
        return ScanConfig.load(config_path)
    # Without a config document, scope the scan to the target host only
    host = urlsplit(target).hostname or ""
    config = ScanConfig()
    config.scan_targets.targets = [TargetRule(domain=host, include_subdomains=False)]
    return config


async def _fetch_page(url: str):
    async with httpx.AsyncClient(
        timeout=settings.PROBE_TIMEOUT,
        follow_redirects=True,
        headers={"User-Agent": settings.USER_AGENT},
    ) as client:
        response = await client.get(url)
        return str(response.url), response.text, dict(response.headers)


@app.command(name="scan")
def scan(
    target: str = typer.Argument(..., help="Page URL to scan"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Scan configuration JSON"),
    vuln_class: VulnClass = typer.Option(VulnClass.REFLECTED, "--vuln-class", help="Payload class to probe with"),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Webhook URL for confirmed findings"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write verdicts as JSON"),
):
    """Fetch a page, probe every injection point on it and print the verdicts."""
    try:
        config = _load_config(config_path, target)
    except InvalidConfigError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
        for error in e.errors:
            console.print(f"  • {error}")
        raise typer.Exit(code=1)

    webhook_url = webhook or settings.WEBHOOK_URL
    sink = WebhookSink(webhook_url) if webhook_url else LoggingSink()

    console.print(f"\n[bold green]Scanning:[/bold green] [cyan]{target}[/cyan]")
    console.print(
        f"[bold green]Limits:[/bold green] {config.request_limit.max_requests_per_minute}/min, "
        f"concurrency={config.request_limit.max_concurrent_requests}, delay={config.request_limit.request_delay}s"
    )

    async def _run():
        url, html, headers = await _fetch_page(target)
        async with ScanSession(config, sink=sink) as session:
            return await session.scanner.scan_page(url, html, headers, vuln_class=vuln_class)

    try:
        results = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Scan aborted by user.[/yellow]")
        raise typer.Exit(code=130)
    except httpx.HTTPError as e:
        console.print(f"\n[bold red]Could not fetch {target}:[/bold red] {e}")
        raise typer.Exit(code=1)

    if not results:
        console.print("[yellow]No injection points scanned (page out of scope or nothing discovered).[/yellow]")
        return

    table = Table(title=f"Verdicts for {target}")
    table.add_column("Kind", style="cyan")
    table.add_column("Location")
    table.add_column("Method")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Vulnerable")
    for result in results:
        verdict = result.verdict
        table.add_row(
            result.discovered.point.kind.value,
            result.discovered.point.location_path,
            result.discovered.context.method,
            verdict.vuln_class.value if verdict.vuln_class else ("error" if verdict.error else "-"),
            f"{verdict.confidence:.2f}",
            "[bold red]YES[/bold red]" if verdict.is_vulnerable else "no",
        )
    console.print(table)

    vulnerable = [r for r in results if r.verdict.is_vulnerable]
    console.print(f"[bold green]Done.[/bold green] {len(results)} points, {len(vulnerable)} vulnerable")

    if output is not None:
        output.write_text(json.dumps([r.to_dict() for r in results], indent=2), encoding="utf-8")
        console.print(f"Verdicts saved to: {output}")


@app.command(name="decode")
def decode(text: str = typer.Argument(..., help="Text to peel encodings from")):
    """Repeatedly decode every recognised encoding layer."""
    codec = EncodingCodec()
    layers = codec.detect_encodings(text)
    console.print(f"[bold green]Detected:[/bold green] {', '.join(layers) if layers else 'none'}")
    console.print(codec.decode_all(text), markup=False, highlight=False)


@app.command(name="variants")
def variants(
    payload_id: str = typer.Argument("r-script", help="Catalog payload id"),
    token: str = typer.Option("1700000000000123", "--token", help="Uniqueness token to embed"),
    waf: Optional[str] = typer.Option(None, "--waf", help="Assume this WAF (modsecurity, cloudflare, aws, akamai)"),
    context_type: Optional[ContextType] = typer.Option(None, "--context", help="Assume this context type"),
):
    """List the variants generated for a catalog payload."""
    environment = Environment()
    if waf:
        signature = next((s for s in WAF_SIGNATURES if s.name.lower() == waf.lower()), None)
        if signature is None:
            console.print(f"[bold red]Unknown WAF:[/bold red] {waf}")
            raise typer.Exit(code=1)
        environment.waf = signature.profile()

    context = Context(types=[context_type]) if context_type else Context.unknown()
    try:
        payload = PayloadCatalog().get(payload_id)
    except GenerationError:
        console.print(f"[bold red]Unknown payload:[/bold red] {payload_id}")
        raise typer.Exit(code=1)
    generated = VariantGenerator().generate(payload, context, environment, token)

    table = Table(title=f"Variants of {payload.id}")
    table.add_column("Transform", style="cyan", no_wrap=True)
    table.add_column("Confidence", justify="right")
    table.add_column("Traits")
    table.add_column("Payload", overflow="fold")
    for variant in generated:
        traits = validate_bypass(variant.materialized)["evidence"]
        table.add_row(variant.label, f"{variant.confidence:.2f}", ", ".join(traits) or "-", variant.materialized)
    console.print(table)


if __name__ == "__main__":
    app()
