# FlightQuery CLI - Main Application
"""
FlightQuery CLI
メインアプリケーション構造
"""

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

# === アプリケーション初期化 ===

app = typer.Typer(
    name="flightquery",
    help="FlightQuery - Ask flight questions and watch the answer and SQL stream in",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


# === 出力フォーマット ===

class OutputFormat(str, Enum):
    """出力フォーマット"""
    text = "text"
    json = "json"


# === ユーティリティ関数 ===

def get_client(config_path: Optional[Path] = None):
    """FlightQueryClientを取得

    Args:
        config_path: 設定ファイルパス（Noneの場合は探索）

    Returns:
        FlightQueryClient: 初期化済みインスタンス
    """
    from flightquery.api import FlightQueryClient, load_config
    from flightquery.observability import configure_observability

    if config_path is not None and not config_path.exists():
        from flightquery.errors import ConfigurationError

        raise ConfigurationError(f"Config file not found: {config_path}", path=str(config_path))

    config = load_config(config_path)
    observability = configure_observability({"log_level": config.log_level})
    return FlightQueryClient(config, observability=observability)


def print_error(message: str):
    """エラーメッセージを表示"""
    console.print(f"[red]✗ Error:[/red] {message}")


def print_success(message: str):
    """成功メッセージを表示"""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str):
    """警告メッセージを表示"""
    console.print(f"[yellow]⚠[/yellow] {message}")


# === 描画 ===

def render_snapshot(snapshot) -> RenderableType:
    """スナップショットを回答パネルとSQLパネルに描画"""
    if snapshot.answer:
        answer: RenderableType = Markdown(snapshot.answer)
    else:
        answer = Text("Waiting for answer...", style="dim")

    panels: list[RenderableType] = [
        Panel(answer, title="[bold]Answer[/bold]", border_style="green"),
    ]
    if snapshot.query:
        panels.append(Panel(
            Syntax(snapshot.query, "sql", theme="monokai", word_wrap=True),
            title="[bold]SQL[/bold]",
            border_style="cyan",
        ))
    return Group(*panels)


def render_segments(segments) -> RenderableType:
    """セグメント化された回答を描画"""
    parts: list[RenderableType] = []

    if segments.title:
        parts.append(Text(segments.title, style="bold cyan"))

    if segments.items:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", style="dim", width=3)
        table.add_column("Flight")
        for i, item in enumerate(segments.items, 1):
            table.add_row(str(i), Markdown(item))
        parts.append(table)

    if segments.summary:
        parts.append(Panel(Markdown(segments.summary), border_style="yellow"))

    return Group(*parts)


async def stream_answer(client, question: str, on_snapshot: Optional[Callable] = None):
    """質問を送信し、スナップショットを on_snapshot に渡しながら終了まで待機"""
    unsubscribe = client.subscribe(on_snapshot) if on_snapshot else None
    try:
        return await client.ask(question)
    finally:
        if unsubscribe:
            unsubscribe()


# === バージョンコマンド ===

@app.command()
def version():
    """Show version information"""
    from flightquery import __version__

    console.print(Panel.fit(
        f"[bold cyan]FlightQuery[/bold cyan] v{__version__}\n"
        "[dim]Streaming flight search assistant client[/dim]",
        border_style="cyan"
    ))


# === promptsコマンド ===

@app.command()
def prompts():
    """List the predefined example questions"""
    from flightquery.api import PREDEFINED_PROMPTS

    table = Table(title="Predefined Prompts")
    table.add_column("#", style="cyan", width=3)
    table.add_column("Question")

    for i, prompt in enumerate(PREDEFINED_PROMPTS, 1):
        table.add_row(str(i), prompt)

    console.print(table)
    console.print("\n[dim]Use one with:[/dim] [cyan]flightquery ask --prompt 1[/cyan]")


# === askコマンド ===

@app.command()
def ask(
    question: Optional[str] = typer.Argument(None, help="Question about flights"),
    prompt: Optional[int] = typer.Option(
        None, "--prompt", "-p", help="Use a predefined prompt by number"
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file path"
    ),
    output: OutputFormat = typer.Option(
        OutputFormat.text, "--output", "-o", help="Output format"
    ),
):
    """Ask a question and stream the answer and SQL

    Examples:
        flightquery ask "What is the cheapest flight from New Delhi to Hanoi?"
        flightquery ask --prompt 2 --output json
    """
    from flightquery.api import NO_ANSWER_TEXT, PREDEFINED_PROMPTS
    from flightquery.errors import FlightQueryError
    from flightquery.stream import SessionStatus, Snapshot

    if prompt is not None:
        if not 1 <= prompt <= len(PREDEFINED_PROMPTS):
            print_error(f"Invalid prompt number: {prompt}")
            console.print(f"Choose between 1 and {len(PREDEFINED_PROMPTS)}")
            raise typer.Exit(1)
        question = PREDEFINED_PROMPTS[prompt - 1]

    if question is None or not question.strip():
        print_warning("Please enter a question")
        raise typer.Exit(1)

    try:
        client = get_client(config)
    except FlightQueryError as e:
        print_error(f"Configuration error: {e.message}")
        raise typer.Exit(1)

    if output == OutputFormat.json:
        final = asyncio.run(stream_answer(client, question))
    else:
        console.print(f"[bold]Q:[/bold] {question}\n")
        with Live(
            render_snapshot(Snapshot()),
            console=console,
            refresh_per_second=8,
        ) as live:
            final = asyncio.run(stream_answer(
                client,
                question,
                lambda snapshot: live.update(render_snapshot(snapshot)),
            ))
            live.update(render_snapshot(final))

    session = client.current
    error = session.error if session is not None else None
    segments = client.segments(final)

    # 結果出力
    if output == OutputFormat.json:
        console.print_json(json.dumps({
            "question": question,
            **final.to_dict(),
            "segments": segments.to_dict(),
            "error": error.to_dict() if error else None,
        }, ensure_ascii=False))
    elif final.status is SessionStatus.COMPLETED:
        if not final.answer.strip():
            console.print(f"\n[dim]{NO_ANSWER_TEXT}[/dim]")
        elif not segments.is_empty:
            console.print()
            console.print(render_segments(segments))
        if session is not None:
            console.print(f"\n[dim]Time: {session.duration_ms:.0f}ms[/dim]")

    if final.status is SessionStatus.FAILED:
        if output != OutputFormat.json:
            message = error.message if error else "stream failed"
            print_error(f"Error querying the API: {message}")
        raise typer.Exit(1)


# === サブコマンドのアタッチ ===

def attach_commands():
    """サブコマンドをアタッチ"""
    from flightquery.cli.commands import config_app

    app.add_typer(config_app, name="config")


attach_commands()
