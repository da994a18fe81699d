"""
Busshell Complete: tab completion driven by live bus state.

Every lookup goes back to the bus; nothing is cached between keystrokes.
A failed lookup just means no suggestions.
"""

from __future__ import annotations

import shlex
from typing import Callable, Iterable, Mapping

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from busshell_bus import BusShellError, log
from busshell_nav import NavigationContext, resolve_path

# (ctx, finished args, word being typed) -> candidate words
CompleteFunc = Callable[[NavigationContext, list[str], str], list[str]]


# ============================================================================
# Completion functions
# ============================================================================

def complete_services(ctx: NavigationContext, args: list[str], prefix: str) -> list[str]:
    if args:
        return []
    try:
        return ctx.list_services()
    except BusShellError as e:
        log("COMPLETE", {"what": "services", "error": str(e)})
        return []


def complete_children(ctx: NavigationContext, args: list[str], prefix: str) -> list[str]:
    """Child names under the path `cd args` would reach."""
    head, sep, _partial = prefix.rpartition("/")
    tokens = list(args)
    if sep:
        if prefix.startswith("/") and not tokens:
            tokens = [head or "/"]
        elif head:
            tokens.append(head)

    path = resolve_path(ctx.path, ctx.previous_path, ctx.service, tokens)
    try:
        description = ctx.describe(path)
    except BusShellError as e:
        log("COMPLETE", {"what": "children", "path": path, "error": str(e)})
        return []

    leading = head + sep
    return [leading + child for child in description.children]


def complete_interfaces(ctx: NavigationContext, args: list[str], prefix: str) -> list[str]:
    if args:
        return []
    try:
        return ctx.describe().interface_names
    except BusShellError as e:
        log("COMPLETE", {"what": "interfaces", "error": str(e)})
        return []


def complete_properties(ctx: NavigationContext, args: list[str], prefix: str) -> list[str]:
    if args or not ctx.interface:
        return []
    try:
        return [p.name for p in ctx.selected_interface().properties]
    except BusShellError as e:
        log("COMPLETE", {"what": "properties", "error": str(e)})
        return []


def complete_methods(ctx: NavigationContext, args: list[str], prefix: str) -> list[str]:
    if args or not ctx.interface:
        return []
    try:
        return [m.name for m in ctx.selected_interface().methods]
    except BusShellError as e:
        log("COMPLETE", {"what": "methods", "error": str(e)})
        return []


# ============================================================================
# prompt_toolkit adapter
# ============================================================================

def split_current_token(text: str) -> tuple[list[str], str]:
    """Return (finished tokens, word being typed)."""
    if not text:
        return [], ""
    try:
        parts = shlex.split(text, posix=True)
    except ValueError:
        parts = text.split()
    if text[-1].isspace():
        parts.append("")
    if not parts:
        return [], ""
    return parts[:-1], parts[-1]


class ShellCompleter(Completer):
    """Completes command names, then each command's own arguments."""

    def __init__(self, ctx: NavigationContext, command_names: Iterable[str],
                 completers: Mapping[str, CompleteFunc]):
        self.ctx = ctx
        self.command_names = sorted(command_names)
        self.completers = completers

    def candidates(self, text: str) -> tuple[list[str], str]:
        """Matching words for the buffer, plus the word they replace."""
        finished, prefix = split_current_token(text.lstrip())
        if not finished:
            return [n for n in self.command_names if n.startswith(prefix)], prefix

        complete = self.completers.get(finished[0])
        if complete is None:
            return [], prefix
        words = complete(self.ctx, finished[1:], prefix)
        return [w for w in words if w.startswith(prefix)], prefix

    def get_completions(self, document: Document, complete_event) -> Iterable[Completion]:
        words, prefix = self.candidates(document.text_before_cursor)
        for word in words:
            yield Completion(word, start_position=-len(prefix))
