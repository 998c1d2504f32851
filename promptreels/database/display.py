from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table


def _fmt(value, fmt: str = ".4f") -> str:
    return "-" if value is None else format(value, fmt)


def population_table(status: Dict[str, Any]) -> Table:
    table = Table(
        title=(
            f"Prompt population (best: {status.get('best_id')}, "
            f"size: {status.get('population_size')}, "
            f"max gen: {status.get('max_generation')})"
        ),
        show_lines=False,
    )
    table.add_column("Rank", justify="right", style="dim")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Gen", justify="right")
    table.add_column("Weight", justify="right", style="green")
    table.add_column("Latest", justify="right")
    table.add_column("Average", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Parents", style="dim")
    for rank, template in enumerate(status.get("templates", []), start=1):
        table.add_row(
            str(rank),
            template["id"],
            str(template["generation"]),
            _fmt(template["weight"]),
            _fmt(template.get("latest_score")),
            _fmt(template.get("average_score")),
            str(template.get("samples", 0)),
            ", ".join(template.get("parents") or []) or "-",
        )
    return table


def queue_table(status: Dict[str, Dict[str, Any]]) -> Table:
    table = Table(title="Job queues")
    table.add_column("Category", style="cyan")
    table.add_column("Processing")
    table.add_column("Started")
    table.add_column("Queued", justify="right")
    for category, info in status.items():
        processing = info.get("processing")
        table.add_row(
            category,
            processing["id"] if processing else "-",
            (processing or {}).get("started_at") or "-",
            str(info.get("queued_count", 0)),
        )
    return table


def print_population(status: Dict[str, Any], console: Console = None) -> None:
    (console or Console()).print(population_table(status))


def print_queues(status: Dict[str, Dict[str, Any]], console: Console = None) -> None:
    (console or Console()).print(queue_table(status))


def print_history(history: List[Dict[str, Any]], console: Console = None) -> None:
    console = console or Console()
    table = Table(title=f"Top {len(history)} prompt templates")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Gen", justify="right")
    table.add_column("Weight", justify="right", style="green")
    table.add_column("Average", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Text", overflow="fold", max_width=60)
    for entry in history:
        table.add_row(
            entry["id"],
            entry["name"],
            str(entry["generation"]),
            _fmt(entry["weight"]),
            _fmt(entry.get("average_score")),
            str(entry["samples"]),
            entry["text"],
        )
    console.print(table)
