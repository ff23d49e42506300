"""Output formatting: canonical JSON for snapshots + Rich table rendering."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from image_studio.models import KeyUsage, SystemStatus


def _status_cell(row: KeyUsage) -> str:
    if row.is_rate_limited:
        return "[yellow]rate limited[/yellow]"
    if row.failures:
        return f"[magenta]{row.failures} failure(s)[/magenta]"
    return "[green]healthy[/green]"


def render_usage(
    rows: list[KeyUsage],
    status: Optional[SystemStatus] = None,
    console: Optional[Console] = None,
    fingerprints: Optional[dict[str, str]] = None,
) -> None:
    """Print the usage snapshot as a table, followed by the pool summary."""
    console = console or Console()
    table = Table(title="API Key Pool", show_lines=True)
    table.add_column("Key", style="cyan")
    table.add_column("Feature")
    if fingerprints:
        table.add_column("Fingerprint")
    table.add_column("Uses", justify="right")
    table.add_column("Status")

    for r in rows:
        cells = [r.name, r.feature]
        if fingerprints:
            cells.append(fingerprints.get(r.name, ""))
        cells += [str(r.usage_count), _status_cell(r)]
        table.add_row(*cells)
    console.print(table)

    if status:
        console.print(
            f"  [bold]Summary:[/bold] {status.total_credentials} keys — "
            f"[green]{status.healthy_credentials}[/green] healthy, "
            f"{status.rate_limited_credentials} rate limited, "
            f"{status.total_requests} requests"
        )


def snapshot_payload(rows: list[KeyUsage], status: SystemStatus) -> dict:
    return {"system": status.to_dict(), "keys": [r.to_dict() for r in rows]}


def write_json(payload: dict, path: Path, console: Optional[Console] = None) -> bool:
    """Write a JSON document, refusing to follow symlinks. Returns True on success."""
    console = console or Console(stderr=True)
    if path.is_symlink():
        console.print(f"[red]Refusing to write to {path} — it is a symlink.[/red]")
        return False
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
    console.print(f"[green]Results written to {path}[/green]")
    return True
