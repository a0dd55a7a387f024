"""Terminal entry point for Coder Bot."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from coder_bot import __version__
from coder_bot.agent import Agent, AgentResult
from coder_bot.config import Config, set_config
from coder_bot.exceptions import CoderBotError, ConfigurationError, WorkspaceError
from coder_bot.llm import set_provider
from coder_bot.logging import configure_logging, log

app = typer.Typer(help="Coder Bot - a tool-calling coding agent for your terminal")

EXIT_COMMANDS = {"/exit", "/quit"}
HELP_TEXT = (
    "/reset            clear the conversation history\n"
    "/plan on|off      toggle planning mode\n"
    "/cd <dir>         change the project directory (relative to the workspace)\n"
    "/history          show the number of history entries\n"
    "/exit             quit"
)


def handle_command(agent: Agent, line: str, console: Console) -> bool:
    """Run one slash command. Returns False when the REPL should stop."""
    command, _, argument = line.strip().partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command in EXIT_COMMANDS:
        return False
    if command == "/reset":
        agent.clear_history()
        console.print("[green]Conversation history cleared.[/green]")
    elif command == "/plan":
        if argument.lower() in {"on", "off"}:
            agent.is_planning_mode = argument.lower() == "on"
        state = "on" if agent.is_planning_mode else "off"
        console.print(f"Planning mode is [bold]{state}[/bold].")
    elif command == "/cd":
        if not argument:
            console.print(f"Working directory: {agent.working_directory}")
            return True
        try:
            target = agent.set_working_directory(argument)
        except WorkspaceError as e:
            console.print(f"[red]{e}[/red]")
            return True
        target.mkdir(parents=True, exist_ok=True)
        console.print(f"Working directory: {target}")
    elif command == "/history":
        console.print(f"History entries: {len(agent.conversation_history)}")
    else:
        console.print(HELP_TEXT)
    return True


def render_result(result: AgentResult, console: Console) -> None:
    """Print an agent response and the tools it used."""
    style = "cyan" if result.success else "red"
    console.print(Panel(result.response, border_style=style, title="coder-bot", title_align="left"))
    if result.tools_used:
        console.print(
            f"[dim]{result.tool_call_count} tool call(s): {', '.join(result.tools_used)}[/dim]"
        )


async def run_interactive(agent: Agent, console: Console) -> None:
    """Read prompts until /exit, Ctrl-C or EOF."""
    await agent.initialize()
    console.print(
        Panel(
            f"Workspace: {agent.workspace_root}\nType /help for commands.",
            title=f"Coder Bot v{__version__}",
            title_align="left",
        )
    )
    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold green]> [/bold green]")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not handle_command(agent, line, console):
                    break
                continue
            with console.status("Working..."):
                result = await agent.execute(line)
            render_result(result, console)
    finally:
        await agent.shutdown()
        if agent.provider is not None:
            await agent.provider.close()
            set_provider(None)


def main(
    config: str = "",
    workdir: str = "",
    model: str = "",
    max_iterations: int = 0,
    verbose: bool = False,
    log_file: str = "",
) -> None:
    """Start Coder Bot interactive session."""
    console = Console()
    try:
        cfg = Config.load(Path(config) if config else None)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    if model:
        cfg.model.model = model
    if max_iterations > 0:
        cfg.agent.max_iterations = max_iterations
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None, log_file or None)

    workspace_root = cfg.resolved_workspace_root()
    workspace_root.mkdir(parents=True, exist_ok=True)
    try:
        agent = Agent(
            workspace_root=workspace_root,
            working_directory=(workspace_root / workdir) if workdir else None,
        )
    except WorkspaceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    try:
        asyncio.run(run_interactive(agent, console))
    except KeyboardInterrupt:
        log.info("Shutting down...")
    except CoderBotError as e:
        log.error("Fatal error", error=str(e))
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    workdir: str = typer.Option("", "-w", "--workdir", help="Project directory inside the workspace"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    max_iterations: int = typer.Option(0, "--max-iterations", help="Override the iteration cap"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    log_file: str = typer.Option("", "--log-file", help="Write logs to this file instead of stderr"),
) -> None:
    main(config, workdir, model, max_iterations, verbose, log_file)


if __name__ == "__main__":
    app()
