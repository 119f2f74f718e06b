"""
interfaces/cli.py — RecoChat CLI Interface

Interactive REPL for the recommendation assistant.
Uses rich for terminal rendering and aioconsole for async input.

Features:
  - Recommendation cards with price, match reason, promotion and tags
  - Numbered follow-up suggestions (/suggest <n>)
  - Live status while the service warms up and the turn is retried
  - Session history with search, transcript view, resume and delete

Usage:
    recochat
    python -m recochat --log-level DEBUG
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

import aioconsole
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box

from recochat.agent.orchestrator import TurnOutcome, Turn, TurnState
from recochat.brain.classifier import is_transient
from recochat.brain.types import ChatMessage, Recommendation, Role, Session, SessionStatus, now_ms
from recochat.config.settings import Settings
from recochat.exceptions import SessionNotFoundError
from recochat.kernel.bootstrap import ChatStack, build_chat_stack
from recochat.observability.logger import get_logger

log = get_logger(__name__)

_HELP_TEXT = """
## RecoChat Commands

| Command | Description |
|---------|-------------|
| *any text* | Ask for recommendations |
| `/suggest <n>` | Send follow-up suggestion number *n* |
| `/retry` | Resend the last message after an error |
| `/new` | Save this conversation and start a new one |
| `/history [query]` | List saved sessions, optionally filtered |
| `/open <n\\|id>` | Show a saved session's transcript |
| `/resume <n\\|id>` | Continue a saved session |
| `/delete <n\\|id>` | Delete a saved session |
| `/done` | Mark the current session as completed |
| `/help` | Show this help message |
| `exit` / `quit` / Ctrl+D | Leave RecoChat |
"""

_STATUS_COLOURS = {
    SessionStatus.ACTIVE: "green",
    SessionStatus.COMPLETED: "dim",
}


def format_relative_time(ts: int, now: Optional[int] = None) -> str:
    """Human-readable age of an epoch-ms timestamp ("Just now", "5m ago", ...)."""
    current = now if now is not None else now_ms()
    diff_mins = (current - ts) // 60000
    if diff_mins < 1:
        return "Just now"
    if diff_mins < 60:
        return f"{diff_mins}m ago"
    diff_hours = diff_mins // 60
    if diff_hours < 24:
        return f"{diff_hours}h ago"
    diff_days = diff_hours // 24
    if diff_days < 7:
        return f"{diff_days}d ago"
    d = datetime.fromtimestamp(ts / 1000)
    return f"{d.strftime('%b')} {d.day}, {d.year}"


class ChatCLI:
    """
    RecoChat interactive CLI.

    Wires Settings → ChatStack (storage, store, transport, orchestrator),
    then runs a Rich-powered async input loop.
    """

    def __init__(
        self,
        settings: Settings,
        stack: Optional[ChatStack] = None,
        console: Optional[Console] = None,
        ephemeral: bool = False,
    ):
        self.settings = settings
        self.console = console or Console()
        self._ephemeral = ephemeral
        self._stack = stack
        self._status = None
        self._listing: list[Session] = []
        self._shutdown = asyncio.Event()

    @property
    def stack(self) -> ChatStack:
        if self._stack is None:
            self._stack = build_chat_stack(
                self.settings,
                ephemeral=self._ephemeral,
                on_state_change=self._on_turn_state,
            )
        return self._stack

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._print_banner()
        try:
            await self._repl_loop()
        finally:
            await self._cleanup()

    def _print_banner(self) -> None:
        stack = self.stack
        self.console.print(
            Panel(
                f"[bold]{self.settings.app.name}[/] v{self.settings.app.version}  ·  "
                f"Service: [cyan]{self.settings.service.base_url}[/]  ·  "
                f"Saved sessions: [bold]{len(stack.store)}[/]\n"
                f"Session: [dim]{stack.orchestrator.session_id}[/]\n\n"
                f"Describe what you need, or [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                user_input = await aioconsole.ainput(self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self._dispatch(user_input)

    def _build_prompt(self) -> str:
        conv = self.stack.orchestrator.conversation
        return f"\033[36mRecoChat[{conv.turn_count}]\033[0m> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if not raw.startswith("/"):
            await self._cmd_send(raw)
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "/help":
            self.console.print(Markdown(_HELP_TEXT))
        elif cmd == "/retry":
            await self._cmd_retry()
        elif cmd == "/suggest":
            await self._cmd_suggest(arg)
        elif cmd == "/new":
            await self._cmd_new()
        elif cmd == "/history":
            self._cmd_history(arg)
        elif cmd == "/open":
            self._cmd_open(arg)
        elif cmd == "/resume":
            self._cmd_resume(arg)
        elif cmd == "/delete":
            await self._cmd_delete(arg)
        elif cmd == "/done":
            await self._cmd_done()
        else:
            self.console.print(f"[yellow]Unknown command {cmd}. Type /help.[/]")

    # ── Turns ─────────────────────────────────────────────────────────────────

    async def _cmd_send(self, text: str) -> None:
        orc = self.stack.orchestrator
        if orc.loading:
            self.console.print("[yellow]Still waiting on the previous message.[/]")
            return
        with self.console.status("[dim]Finding recommendations...[/]") as status:
            self._status = status
            try:
                outcome = await orc.send(text)
            finally:
                self._status = None
        if outcome is not None:
            self.render_outcome(outcome)

    async def _cmd_retry(self) -> None:
        orc = self.stack.orchestrator
        if not orc.error:
            self.console.print("[dim]Nothing to retry.[/]")
            return
        with self.console.status("[dim]Retrying...[/]") as status:
            self._status = status
            try:
                outcome = await orc.retry()
            finally:
                self._status = None
        if outcome is not None:
            self.render_outcome(outcome)

    async def _cmd_suggest(self, arg: str) -> None:
        suggestions = self._latest_suggestions()
        if not suggestions:
            self.console.print("[dim]No follow-up suggestions yet.[/]")
            return
        try:
            idx = int(arg) - 1
        except ValueError:
            self.console.print("[yellow]Usage: /suggest <number>[/]")
            return
        if not 0 <= idx < len(suggestions):
            self.console.print(f"[yellow]Pick a number between 1 and {len(suggestions)}.[/]")
            return
        self.console.print(f"[dim]> {suggestions[idx]}[/]")
        await self._cmd_send(suggestions[idx])

    def _latest_suggestions(self) -> list[str]:
        for msg in reversed(self.stack.orchestrator.messages):
            if msg.role == Role.ASSISTANT:
                return list(msg.follow_up_suggestions or [])
        return []

    def _on_turn_state(self, turn: Turn) -> None:
        if self._status is None:
            return
        if turn.state == TurnState.RETRYING:
            delay = turn.delays[-1] if turn.delays else 0
            self._status.update(
                f"[yellow]Service is waking up, retrying in {delay:g}s "
                f"(attempt {turn.attempt + 1})...[/]"
            )
        elif turn.state == TurnState.SENDING and turn.attempt > 0:
            self._status.update(f"[dim]Attempt {turn.attempt + 1}...[/]")

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def _cmd_new(self) -> None:
        conv = await self.stack.orchestrator.new_session()
        self.console.print(f"[green]✓ New session[/] [dim]{conv.id}[/]")

    def _cmd_history(self, query: str) -> None:
        sessions = self.stack.store.search(query)
        self._listing = sessions
        if not sessions:
            msg = "No sessions match your search." if query else "No saved sessions yet."
            self.console.print(f"[dim]{msg}[/]")
            return

        table = Table(box=box.SIMPLE_HEAVY, show_lines=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Conversation")
        table.add_column("Msgs", justify="right")
        table.add_column("Recs", justify="right")
        table.add_column("Status")
        table.add_column("Updated", style="dim")
        now = now_ms()
        for i, s in enumerate(sessions, start=1):
            colour = _STATUS_COLOURS.get(s.status, "white")
            table.add_row(
                str(i),
                s.first_message_preview or "[dim](no user message)[/]",
                str(len(s.messages)),
                str(s.recommendation_count),
                f"[{colour}]{s.status.value}[/]",
                format_relative_time(s.updated_at, now),
            )
        self.console.print(table)

    def _cmd_open(self, arg: str) -> None:
        session = self._resolve_session(arg)
        if session is None:
            return
        self.console.print(
            Text(
                f"{session.first_message_preview or session.id}  ·  "
                f"{len(session.messages)} messages  ·  "
                f"{session.recommendation_count} recommendations",
                style="bold",
            )
        )
        for msg in session.messages:
            self.render_message(msg)

    def _cmd_resume(self, arg: str) -> None:
        session = self._resolve_session(arg)
        if session is None:
            return
        try:
            conv = self.stack.orchestrator.resume(session.id)
        except SessionNotFoundError as e:
            self.console.print(f"[red]{e}[/]")
            return
        if conv is None:
            self.console.print("[yellow]Wait for the current message to finish first.[/]")
            return
        self.console.print(f"[green]✓ Resumed[/] [dim]{conv.id}[/]")
        for msg in conv.messages[-2:]:
            self.render_message(msg)

    async def _cmd_delete(self, arg: str) -> None:
        session = self._resolve_session(arg)
        if session is None:
            return
        if await self.stack.store.delete(session.id):
            self._listing = [s for s in self._listing if s.id != session.id]
            self.console.print(f"[green]✓ Deleted[/] [dim]{session.id}[/]")

    async def _cmd_done(self) -> None:
        orc = self.stack.orchestrator
        updated = await self.stack.store.set_status(orc.session_id, SessionStatus.COMPLETED)
        if updated is None:
            self.console.print("[dim]This session has not been saved yet.[/]")
            return
        self.console.print("[green]✓ Session marked completed.[/]")

    def _resolve_session(self, arg: str) -> Optional[Session]:
        if not arg:
            self.console.print("[yellow]Give a session number from /history or an id.[/]")
            return None
        store = self.stack.store
        if arg.isdigit():
            listing = self._listing or store.list_sessions()
            idx = int(arg) - 1
            if 0 <= idx < len(listing):
                return listing[idx]
            self.console.print(f"[yellow]No session #{arg}. Run /history first.[/]")
            return None
        session = store.get(arg)
        if session is None:
            matches = [s for s in store.list_sessions() if s.id.startswith(arg)]
            session = matches[0] if len(matches) == 1 else None
        if session is None:
            self.console.print(f"[yellow]No saved session '{arg}'.[/]")
        return session

    # ── Rendering ─────────────────────────────────────────────────────────────

    def render_outcome(self, outcome: TurnOutcome) -> None:
        if outcome.succeeded:
            msg = outcome.assistant_message
            if msg is not None:
                self.render_message(msg)
            return

        if outcome.takeover_document is not None:
            self.console.print(
                Panel(
                    "The service answered with a web page instead of a reply "
                    "(often a sign-in page). Open the service in a browser, "
                    "then /retry.",
                    title="[red]Service page[/]",
                    border_style="red",
                    padding=(0, 1),
                )
            )
            return

        hint = (
            "The service may still be starting. Type /retry in a moment."
            if is_transient(outcome.error)
            else "Type /retry to send it again."
        )
        self.console.print(
            Panel(
                f"{outcome.error}\n\n[dim]{hint}[/]",
                title="[red]Error[/]",
                border_style="red",
                padding=(0, 1),
            )
        )

    def render_message(self, msg: ChatMessage) -> None:
        text = (msg.content or "").strip()
        if msg.role == Role.USER:
            self.console.print(Text(f"You: {text}", style="bold"))
            return

        if text:
            self.console.print(Panel(Markdown(text), border_style="cyan", padding=(0, 2)))
        for rec in msg.recommendations or []:
            self.console.print(self._recommendation_card(rec))
        suggestions = msg.follow_up_suggestions or []
        if suggestions:
            lines = "\n".join(f"  [cyan]{i}.[/] {s}" for i, s in enumerate(suggestions, start=1))
            self.console.print(f"[dim]Follow-ups (/suggest <n>):[/]\n{lines}")

    def _recommendation_card(self, rec: Recommendation) -> Panel:
        body: list[str] = []
        if rec.description:
            body.append(rec.description)
        if rec.match_reason:
            body.append(f"[green]Why it fits:[/] {rec.match_reason}")
        if rec.promotion:
            body.append(f"[magenta]Promo:[/] {rec.promotion}")
        if rec.tags:
            body.append("[dim]" + " · ".join(rec.tags) + "[/]")

        title = f"[bold]{rec.product_name or 'Recommendation'}[/]"
        subtitle = f"[yellow]{rec.price}[/]" if rec.price else None
        return Panel(
            "\n".join(body) or "[dim]No details provided.[/]",
            title=title,
            subtitle=subtitle,
            title_align="left",
            subtitle_align="right",
            border_style="green",
            padding=(0, 1),
        )

    # ── Cleanup ───────────────────────────────────────────────────────────────

    async def _cleanup(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            log.info("cli.shutdown", session_id=self._stack.orchestrator.session_id)


# ── Public entry point ────────────────────────────────────────────────────────


async def run_cli(settings: Settings, log, ephemeral: bool = False) -> None:
    """Entry point called from main.py."""
    cli = ChatCLI(settings=settings, ephemeral=ephemeral)

    log.info("cli.starting")
    try:
        await cli.start()
    except KeyboardInterrupt:
        log.info("cli.interrupted")
