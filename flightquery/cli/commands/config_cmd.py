# FlightQuery CLI - Config Commands
"""
FlightQuery CLI - config コマンド群
設定ファイルの生成・表示・検証
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.panel import Panel
from rich.table import Table

from flightquery.cli.main import print_error, print_success, print_warning

console = Console()
config_app = typer.Typer(help="Configuration commands")


# デフォルト設定テンプレート
DEFAULT_CONFIG = """# FlightQuery Configuration File
# Streaming flight search assistant client

# ======================================
# Server
# ======================================

server:
  # Base URL of the assistant server
  base_url: http://localhost:8000

  # Streaming endpoint and the query parameter carrying the question
  endpoint: /stream
  query_param: question

  # Overall timeout in seconds (null = no limit)
  timeout_seconds: null

  # Maximum idle time between events in seconds
  read_timeout_seconds: 60

# ======================================
# SQL Formatting
# ======================================

sql:
  # sqlglot dialect (null = generic SQL), e.g. postgres, duckdb, sqlite
  dialect: null

  # Indentation width
  indent: 2

# ======================================
# Answer Segmentation
# ======================================

segments:
  separator: "---"
  item_marker: "✈"
  summary_marker: "Summary:"

# ======================================
# Logging
# ======================================

# debug, info, warning, error, critical
log_level: warning
"""


def find_config(config: Optional[Path]) -> Optional[Path]:
    """設定ファイルを探す"""
    if config is not None:
        return config

    from flightquery.api import find_config_path

    return find_config_path()


@config_app.command("init")
def config_init(
    output_path: Path = typer.Option(
        Path("./flightquery.yaml"),
        "--output", "-o",
        help="Output path for config file",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite existing file"
    ),
):
    """Initialize a new configuration file"""

    if output_path.exists() and not force:
        print_warning(f"Config file already exists: {output_path}")
        console.print("Use --force to overwrite")
        raise typer.Exit(1)

    try:
        # 親ディレクトリを作成
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG)
    except OSError as e:
        print_error(f"Failed to create config file: {e}")
        raise typer.Exit(1)

    print_success(f"Configuration file created: {output_path}")
    console.print("\nEdit the file to point at your server:")
    console.print(f"  [cyan]$EDITOR {output_path}[/cyan]")
    console.print("\nThen ask a question:")
    console.print("  [cyan]flightquery ask --prompt 1[/cyan]")


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
):
    """Show current configuration"""

    config_path = find_config(config)

    if config_path is None or not config_path.exists():
        print_warning("No configuration file found")
        console.print("\nCreate one with:")
        console.print("  [cyan]flightquery config init[/cyan]")
        raise typer.Exit(1)

    try:
        with open(config_path, encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        print_error(f"Failed to read config file: {e}")
        raise typer.Exit(1)

    syntax = Syntax(content, "yaml", theme="monokai", line_numbers=True)
    console.print(Panel(
        syntax,
        title=str(config_path),
        border_style="cyan",
    ))


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
):
    """Validate configuration file"""

    config_path = find_config(config) or Path("./flightquery.yaml")

    if not config_path.exists():
        print_error(f"Config file not found: {config_path}")
        raise typer.Exit(1)

    from flightquery.api import ConfigManager
    from flightquery.errors import ConfigurationError

    try:
        cfg = ConfigManager.from_yaml(config_path).config
    except ConfigurationError as e:
        print_error(f"Configuration error: {e.message}")
        raise typer.Exit(1)

    # 検証結果テーブル
    table = Table(title="Configuration Validation")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_column("Status")

    checks = [
        ("Stream URL", cfg.transport_config().build_url("<question>"), "✓"),
        ("Timeout", "none" if cfg.timeout_seconds is None else f"{cfg.timeout_seconds:g}s", "✓"),
        ("SQL Dialect", cfg.sql_dialect or "generic", "✓"),
        ("SQL Indent", str(cfg.sql_indent), "✓"),
        ("Item Marker", cfg.item_marker, "✓"),
        ("Summary Marker", cfg.summary_marker, "✓"),
        ("Log Level", cfg.log_level, "✓"),
    ]

    for name, value, status in checks:
        table.add_row(name, value, f"[green]{status}[/green]")

    console.print(table)
    print_success("Configuration is valid")
