#!/usr/bin/env python3
"""
busshell - Interactive explorer for D-Bus services

Usage:
    busshell                           Start the shell, not connected
    busshell -e                        Start on the session bus
    busshell -y -s org.freedesktop.login1
                                       Start on the system bus at a service
    busshell -H HOST                   Start on a remote system bus (ssh)
    busshell -M NAME                   Start on a container's system bus

Shell commands:
    connect [session|e|system|y|host H|machine M]
    list-services                      List well-known bus names
    cs [name]                          Select a service (path resets to /)
    ls                                 Interfaces and children at this path
    cd [-|$|/abs/path|rel ..]          Move around the object tree
    ifc [name]                         Select an interface
    show                               Describe the selected interface
    get <prop> / get-all               Read properties
    call <method> [args...]            Invoke a method through gdbus
    pwd / info / help-types / tmux-buffer / help / exit

Options:
    -s, --service NAME    Service to select at startup
    --log PATH            Debug log file (default /tmp/busshell-<pid>)
    --keep-log            Keep the default log file on exit
"""

import argparse
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich import box

from busshell_bus import (
    BUS_ALIASES,
    OTHER_OPENERS,
    BusKind,
    BusShellError,
    CallFailed,
    GdbusInvoker,
    close_log,
    log,
    open_log,
    read_tmux_buffer,
)
from busshell_complete import (
    CompleteFunc,
    ShellCompleter,
    complete_children,
    complete_interfaces,
    complete_methods,
    complete_properties,
    complete_services,
)
from busshell_format import (
    HELP_TYPES,
    format_interface,
    format_json_text,
    format_listing,
    format_variant,
)
from busshell_nav import NavigationContext

# ============================================================================
# Constants
# ============================================================================

BANNER = "busshell - D-Bus shell"
EXIT_WORDS = ("exit", "quit")
DEFAULT_HISTORY = Path.home() / ".busshell_history"

console = Console()


def error(msg: str):
    """Print error and exit."""
    console.print(f"[red]error:[/red] {escape(msg)}")
    sys.exit(1)


class UsageError(BusShellError):
    """Command was given the wrong arguments."""


# ============================================================================
# Shell - context + output + external helpers
# ============================================================================

class Shell:
    """What every command handler gets: the navigation context and I/O."""

    def __init__(
        self,
        ctx: NavigationContext,
        out: Console | None = None,
        invoker: GdbusInvoker | None = None,
        tmux_reader: Callable[[], str] = read_tmux_buffer,
    ):
        self.ctx = ctx
        self.console = out or console
        self.invoker = invoker or GdbusInvoker()
        self.tmux_reader = tmux_reader

    def print(self, *objects, **kwargs):
        self.console.print(*objects, **kwargs)

    def page(self, text: str):
        """Print long output through the pager when attached to a terminal."""
        if self.console.is_terminal:
            with self.console.pager():
                self.console.print(text, markup=False, highlight=False)
        else:
            self.console.print(text, markup=False, highlight=False)

    def report(self, e: BusShellError):
        self.console.print(f"[red]error:[/red] {escape(str(e))}")

    @property
    def prompt(self) -> str:
        return f"{self.ctx.service or '-'}:{self.ctx.path}> "

    def dispatch(self, line: str) -> bool:
        """Run one command line. Returns False when the shell should exit."""
        try:
            tokens = shlex.split(line)
        except ValueError as e:
            self.report(UsageError(f"cannot parse line: {e}"))
            return True
        if not tokens:
            return True

        name, args = tokens[0], tokens[1:]
        if name in EXIT_WORDS:
            return False

        command = COMMAND_INDEX.get(name)
        if command is None:
            self.report(UsageError(f"unknown command: {name} (try 'help')"))
            return True

        try:
            command.handler(self, args)
        except BusShellError as e:
            log("ERR", {"command": command.name, "args": args, "error": str(e)})
            self.report(e)
        return True


# ============================================================================
# Commands
# ============================================================================

def cmd_connect(shell: Shell, args: list[str]):
    ctx = shell.ctx
    if args:
        word = args[0]
        if word in BUS_ALIASES and len(args) == 1:
            ctx.connect(BUS_ALIASES[word])
        elif word in OTHER_OPENERS and len(args) == 2:
            ctx.connect(BusKind.OTHER, args[1], via=word)
        else:
            raise UsageError("usage: connect [session|e|system|y|host HOST|machine NAME]")
    shell.print(ctx.describe_connection())
    if ctx.transport is not None:
        shell.print(escape(f"names: [{' '.join(ctx.connection_names())}]"))


def cmd_list_services(shell: Shell, args: list[str]):
    shell.page("\n".join(shell.ctx.list_services()))


def cmd_change_service(shell: Shell, args: list[str]):
    if len(args) == 1:
        shell.ctx.select_service(args[0])
    elif args:
        raise UsageError("usage: change-service [name]")
    shell.print(f"service: [bold]{escape(repr(shell.ctx.service))}[/bold]")


def cmd_ls(shell: Shell, args: list[str]):
    description = shell.ctx.describe()
    shell.print(format_listing(description, shell.ctx.interface))


def cmd_show(shell: Shell, args: list[str]):
    if not shell.ctx.interface:
        shell.print("[dim]no interface selected[/dim]")
        return
    shell.print(format_interface(shell.ctx.selected_interface()))


def cmd_cd(shell: Shell, args: list[str]):
    nav = shell.ctx.change_directory(args)
    shell.print(f"cd to [bold]{escape(nav.path)}[/bold]")
    if nav.auto_selected:
        shell.print(f"auto select interface: [cyan]{escape(nav.auto_selected)}[/cyan]")


def cmd_get(shell: Shell, args: list[str]):
    if len(args) != 1:
        raise UsageError("usage: get <property>")
    variant = shell.ctx.get_property(args[0])
    shell.print(format_variant(variant), markup=False)


def cmd_get_all(shell: Shell, args: list[str]):
    for name, variant in shell.ctx.get_all_properties():
        shell.print(f"[yellow]{escape(name)}[/yellow]: {escape(format_variant(variant))}")


def cmd_pwd(shell: Shell, args: list[str]):
    shell.print(shell.ctx.path, markup=False, highlight=False)


def cmd_info(shell: Shell, args: list[str]):
    for key, value in shell.ctx.info().items():
        shell.print(f"[bold]{key}:[/bold] {escape(str(value))}")


def cmd_interface(shell: Shell, args: list[str]):
    if len(args) == 1:
        shell.ctx.select_interface(args[0])
        shell.print(f"select interface: [cyan]{escape(args[0])}[/cyan]")
    elif args:
        raise UsageError("usage: interface [name]")
    else:
        shell.print(f"interface: [cyan]{escape(shell.ctx.interface)}[/cyan]")


def cmd_call(shell: Shell, args: list[str]):
    if not args:
        raise UsageError("usage: call <method> [args...]")
    argv = shell.ctx.call_argv(args[0], args[1:])
    shell.print(f"[dim]{escape(shlex.join(argv))}[/dim]")
    status = shell.invoker.run(argv)
    if status != 0:
        raise CallFailed(f"{argv[0]} exited with status {status}")


def cmd_tmux_buffer(shell: Shell, args: list[str]):
    text = shell.tmux_reader()
    shell.print(format_json_text(text) or text.rstrip("\n"), markup=False)


def cmd_help_types(shell: Shell, args: list[str]):
    shell.print(HELP_TYPES, markup=False, highlight=False, end="")


def cmd_help(shell: Shell, args: list[str]):
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("command", style="bold cyan")
    table.add_column("usage")
    table.add_column("help", style="dim")
    for command in COMMANDS:
        names = ", ".join([command.name, *command.aliases])
        table.add_row(names, escape(command.usage), command.help)
    table.add_row(", ".join(EXIT_WORDS), "", "leave the shell")
    shell.print(table)


# ============================================================================
# Command table
# ============================================================================

@dataclass(frozen=True)
class Command:
    name: str
    handler: Callable[[Shell, list[str]], None]
    help: str
    usage: str = ""
    aliases: tuple[str, ...] = ()
    complete: CompleteFunc | None = None
    names: tuple[str, ...] = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "names", (self.name, *self.aliases))


COMMANDS: tuple[Command, ...] = (
    Command("connect", cmd_connect, "connect to a bus or show the connection",
            "[session|e|system|y|host H|machine M]"),
    Command("list-services", cmd_list_services, "list well-known bus names",
            aliases=("ls-services",)),
    Command("change-service", cmd_change_service, "select the target service",
            "[name]", aliases=("cs",), complete=complete_services),
    Command("ls", cmd_ls, "interfaces and children at the current path"),
    Command("show", cmd_show, "describe the selected interface"),
    Command("cd", cmd_cd, "change object path", "[-|$|/path|segments...]",
            complete=complete_children),
    Command("get", cmd_get, "read a property of the selected interface",
            "<property>", complete=complete_properties),
    Command("get-all", cmd_get_all, "read all properties of the selected interface"),
    Command("pwd", cmd_pwd, "print the current path"),
    Command("info", cmd_info, "connection, service, path, interface, pid"),
    Command("interface", cmd_interface, "select or show the interface",
            "[name]", aliases=("ifc",), complete=complete_interfaces),
    Command("call", cmd_call, "invoke a method with gdbus",
            "<method> [args...]", complete=complete_methods),
    Command("tmux-buffer", cmd_tmux_buffer, "print the tmux paste buffer"),
    Command("help-types", cmd_help_types, "D-Bus type signature reference"),
    Command("help", cmd_help, "this list"),
)

COMMAND_INDEX: dict[str, Command] = {
    name: command for command in COMMANDS for name in command.names
}


def make_completer(ctx: NavigationContext) -> ShellCompleter:
    completers = {
        name: command.complete
        for name, command in COMMAND_INDEX.items()
        if command.complete is not None
    }
    return ShellCompleter(ctx, [*COMMAND_INDEX, *EXIT_WORDS], completers)


# ============================================================================
# REPL
# ============================================================================

def run_repl(shell: Shell, history_path: Path):
    """Read and dispatch lines until EOF or exit."""
    session = PromptSession(
        history=FileHistory(str(history_path)),
        completer=make_completer(shell.ctx),
    )
    while True:
        try:
            line = session.prompt(shell.prompt)
        except KeyboardInterrupt:
            continue
        except EOFError:
            break
        if not shell.dispatch(line):
            break


def default_log_path() -> tuple[Path, bool]:
    """(log path, whether it is ours to remove on exit)."""
    env = os.environ.get("BUSSHELL_LOG")
    if env:
        return Path(env), False
    return Path(f"/tmp/busshell-{os.getpid()}"), True


def main():
    parser = argparse.ArgumentParser(description="Interactive explorer for D-Bus services")
    bus = parser.add_mutually_exclusive_group()
    bus.add_argument("-e", "--session", action="store_true", help="Connect to the session bus")
    bus.add_argument("-y", "--system", action="store_true", help="Connect to the system bus")
    bus.add_argument("-H", "--host", help="Connect to a remote system bus over ssh")
    bus.add_argument("-M", "--machine", help="Connect to a container's system bus")
    parser.add_argument("-s", "--service", help="Service to select at startup")
    parser.add_argument("--log", help="Debug log file")
    parser.add_argument("--keep-log", action="store_true", help="Keep the default log file")

    args = parser.parse_args()

    if args.log:
        log_path, removable = Path(args.log), False
    else:
        log_path, removable = default_log_path()
    open_log(log_path)

    history_path = Path(os.environ.get("BUSSHELL_HISTORY", DEFAULT_HISTORY))
    ctx = NavigationContext()
    shell = Shell(ctx)

    try:
        if args.session:
            ctx.connect(BusKind.SESSION)
        elif args.system:
            ctx.connect(BusKind.SYSTEM)
        elif args.host:
            ctx.connect(BusKind.OTHER, args.host, via="host")
        elif args.machine:
            ctx.connect(BusKind.OTHER, args.machine, via="machine")
        if args.service:
            ctx.select_service(args.service)
    except BusShellError as e:
        close_log(remove=removable and not args.keep_log)
        error(str(e))

    console.print(f"[bold]{BANNER}[/bold] [dim]({ctx.describe_connection()}, log {log_path})[/dim]")
    try:
        run_repl(shell, history_path)
    finally:
        close_log(remove=removable and not args.keep_log)


if __name__ == "__main__":
    main()
