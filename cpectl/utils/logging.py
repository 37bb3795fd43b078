import logging
import re
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

console = Console()

_SECRET_RE = re.compile(r"(?i)((?:password|token|authorization)\s*[=:]\s*(?:bearer\s+)?)(\S+)")


class SecretMaskingFilter(logging.Filter):
    """Mask ``password=...``/``token: ...`` style values in rendered records."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        masked = _SECRET_RE.sub(lambda m: m.group(1) + "******", msg)
        if masked != msg:
            record.msg = masked
            record.args = None
        return True


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None):
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [
        RichHandler(
            console=console,
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=True
        )
    ]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(SecretMaskingFilter())

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=handlers,
        force=True
    )
    # urllib3 logs full request URLs at DEBUG, which is noise next to our own lines
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def success(message: str):
    console.print(f"[green]✓[/green] {message}")


def error(message: str):
    console.print(f"[red]✗[/red] {message}", style="red")


def warning(message: str):
    console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")


def info(message: str):
    console.print(f"[blue]ℹ[/blue] {message}")


def report(text: str):
    # Device output may contain square brackets; print it verbatim.
    console.print(text, markup=False, highlight=False)


def create_progress():
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def print_dict(data: dict, title: Optional[str] = None):
    if title:
        console.print(f"\n[bold]{title}[/bold]")
    for key, value in data.items():
        console.print(f"  {key}: {value}")


def confirm(prompt: str) -> bool:
    response = console.input(f"{prompt} \\[y/N]: ").strip().lower()
    return response in ['y', 'yes']
