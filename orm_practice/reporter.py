from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table


def _short_ts(value: Optional[str]) -> str:
    if not value:
        return "-"
    # ISO timestamps; seconds precision is enough on screen
    return value.replace("T", " ")[:19]


def print_users(
    users: List[Dict[str, Any]], console: Optional[Console] = None, title: str = "Users"
) -> None:
    """
    Render user records (``UserRead`` dumps) as a rich table.
    """
    console = console or Console()

    if not users:
        console.print("[yellow]No users to display.[/yellow]")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Email", style="magenta")
    table.add_column("Age", justify="right", style="green")
    table.add_column("Balance", justify="right", style="bold green")
    table.add_column("Updated", style="dim")
    table.add_column("Deleted", style="red")

    for user in users:
        table.add_row(
            str(user.get("id", "")),
            user.get("name", ""),
            user.get("email", ""),
            str(user.get("age", 0)),
            f"{user.get('balance', 0):,}",
            _short_ts(user.get("updated_at")),
            _short_ts(user.get("deleted_at")),
        )

    console.print(table)


def print_results(results: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render scenario results as a summary table, followed by the records
    visible after the last scenario.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    table = Table(title="ORM Practice Scenarios", box=box.ROUNDED)
    table.add_column("Scenario", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Users", justify="right", style="magenta")
    table.add_column("Notes")

    for res in results:
        status = "[green]ok[/green]" if res.get("ok") else "[red]failed[/red]"
        notes = list(res.get("notes") or [])
        if res.get("error"):
            notes.append(f"[red]{res['error']}[/red]")
        table.add_row(
            res.get("scenario", "Unknown"),
            status,
            str(len(res.get("users") or [])),
            "\n".join(notes),
        )

    console.print(table)
    print_users(results[-1].get("users") or [], console=console, title="Final user records")
