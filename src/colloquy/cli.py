"""
Colloquy CLI — interactive terminal chat over the orchestrator.

Rich renders the conversation; prompt_toolkit reads input. Replies stream
into a Live panel while the orchestrator is Thinking/Streaming.

Voice input needs an audio source. Audio capture is out of scope here, so
/voice streams a raw PCM file (--audio-file) to the transcription source at
real-time pace; /stop ends the recording and sends the transcript.

Usage: colloquy [--db PATH] [--audio-file PCM] [--log-level DEBUG]
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import AsyncIterator

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from colloquy import __version__
from colloquy.backend.base import AudioFactory
from colloquy.backend.registry import get_generation_backend, get_transcription_source
from colloquy.chat.models import ChatState, ChatStateKind
from colloquy.chat.orchestrator import ChatOrchestrator
from colloquy.chat.personas import Persona
from colloquy.core.config import config
from colloquy.core.logging import setup_logging
from colloquy.core.metrics import metrics
from colloquy.session.persistence import PersistenceManager
from colloquy.session.store import SessionStore
from colloquy.voice.recorder import VoiceRecorder

HELP = """[bold]/voice[/bold]  start recording     [bold]/stop[/bold]  stop and send
[bold]/persona[/bold] [name]  show or switch persona
[bold]/sessions[/bold]  list    [bold]/switch[/bold] n  open    [bold]/delete[/bold] n  remove    [bold]/new[/bold]  start fresh
[bold]/export[/bold] [file]  save all as JSON    [bold]/import[/bold] file  replace all from JSON
[bold]/clear[/bold]  delete everything    [bold]/stats[/bold]  metrics    [bold]/quit[/bold]  exit"""


def pcm_file_source(path: Path, chunk_ms: int = 100) -> AudioFactory:
    """Audio factory streaming a raw PCM file at real-time pace."""
    bytes_per_chunk = int(config.stt.sample_rate * 2 * chunk_ms / 1000)

    async def chunks() -> AsyncIterator[bytes]:
        with path.open("rb") as f:
            while True:
                chunk = f.read(bytes_per_chunk)
                if not chunk:
                    return
                yield chunk
                await asyncio.sleep(chunk_ms / 1000)

    return chunks


class ColloquyCLI:
    def __init__(self, orchestrator: ChatOrchestrator):
        self.orchestrator = orchestrator
        self.console = Console()
        self._live: Live | None = None
        self._sessions_shown: list[str] = []

        orchestrator.on_partial(self._on_partial)
        orchestrator.on_transcript(self._on_transcript)
        orchestrator.on_state_change(self._on_state)

    # ─── Orchestrator callbacks ──────────────────────────────────

    def _on_partial(self, content: str) -> None:
        if self._live:
            self._live.update(Text(content, style="cyan"))

    def _on_transcript(self, text: str) -> None:
        self.console.print(f"[dim]🎙 {escape(text)}[/dim]")

    def _on_state(self, state: ChatState) -> None:
        if state.kind is ChatStateKind.ERROR:
            self.console.print(f"[bold red]Error:[/bold red] {escape(state.reason or '')}")
        elif state.kind is ChatStateKind.IDLE and self.orchestrator.transcript_draft:
            self.console.print(
                "[yellow]Recording ended. Heard:[/yellow] "
                f"{escape(self.orchestrator.transcript_draft)}"
            )

    # ─── Main loop ───────────────────────────────────────────────

    async def run(self) -> None:
        await self.orchestrator.start()
        session = self.orchestrator.session
        persona = self.orchestrator.settings.selected_persona

        self.console.print()
        self.console.print(
            Panel(
                f"[bold cyan]Colloquy[/bold cyan] v{__version__}  "
                f"[dim]{escape(session.title)} · {persona.display_name}[/dim]\n"
                "Type a message and press Enter. [bold]/help[/bold] for commands.",
                border_style="dim",
                padding=(0, 1),
            )
        )
        for message in session.messages[-6:]:
            self._print_message(message.content, message.role)

        prompt: PromptSession = PromptSession(history=InMemoryHistory())
        try:
            while True:
                try:
                    with patch_stdout():
                        line = await prompt.prompt_async("you → ")
                except (EOFError, KeyboardInterrupt):
                    break

                line = line.strip()
                if not line:
                    continue
                if line.startswith("/"):
                    if not await self._command(line):
                        break
                    continue
                await self._send(line)
        finally:
            await self.orchestrator.shutdown()
            self.console.print("\n[dim]Goodbye.[/dim]")

    async def _send(self, text: str) -> None:
        self._live = Live(
            Text("…", style="dim"),
            console=self.console,
            refresh_per_second=12,
            transient=True,
        )
        with self._live:
            reply = await self.orchestrator.submit(text)
        self._live = None

        if reply is not None:
            self._print_message(reply.content, reply.role)
        if self.orchestrator.last_error:
            self.console.print(f"[red]{escape(self.orchestrator.last_error)}[/red]")

    def _print_message(self, content: str, role: str) -> None:
        style = {"user": "bold", "assistant": "cyan", "system": "yellow italic"}[role]
        self.console.print()
        self.console.print(Text(content, style=style))
        self.console.print()

    # ─── Commands ────────────────────────────────────────────────

    async def _command(self, line: str) -> bool:
        """Run one slash command. Returns False to quit."""
        name, _, arg = line.partition(" ")
        arg = arg.strip()
        o = self.orchestrator

        if name in ("/quit", "/exit", "/q"):
            return False
        if name == "/help":
            self.console.print(HELP)
        elif name == "/voice":
            if await o.start_voice():
                self.console.print("[dim]Listening… /stop to send[/dim]")
            else:
                self.console.print(
                    f"[red]Voice unavailable[/red] {escape(o.last_error or '')}"
                )
        elif name == "/stop":
            self._live = Live(Text("…", style="dim"), console=self.console, transient=True)
            with self._live:
                reply = await o.stop_voice()
            self._live = None
            if reply is not None:
                self._print_message(reply.content, reply.role)
        elif name == "/persona":
            await self._persona(arg)
        elif name == "/sessions":
            await self._list_sessions()
        elif name in ("/switch", "/delete"):
            session_id = self._resolve_session(arg)
            if session_id is None:
                self.console.print("[red]Unknown session.[/red] Run /sessions first.")
            elif name == "/switch":
                session = await o.switch_session(session_id)
                if session is not None:
                    self.console.print(f"[dim]Switched to {escape(session.title)}[/dim]")
                    for message in session.messages[-6:]:
                        self._print_message(message.content, message.role)
            else:
                if await o.delete_session(session_id):
                    self.console.print("[dim]Session deleted.[/dim]")
        elif name == "/new":
            await o.new_session()
            self.console.print("[dim]New conversation.[/dim]")
        elif name == "/export":
            data = await o.export_all()
            if data is not None:
                if arg:
                    Path(arg).write_text(data)
                    self.console.print(f"[dim]Exported to {escape(arg)}[/dim]")
                else:
                    self.console.print_json(data)
        elif name == "/import":
            if not arg:
                self.console.print("[red]Usage:[/red] /import FILE")
                return True
            try:
                data = Path(arg).read_text()
            except OSError as e:
                self.console.print(f"[red]Cannot read {escape(arg)}:[/red] {escape(str(e))}")
                return True
            if await o.import_all(data):
                self.console.print(
                    f"[dim]Imported {len(o.persistence.recent)} sessions.[/dim]"
                )
        elif name == "/clear":
            await o.clear_all_data()
            self.console.print("[dim]All conversations and settings cleared.[/dim]")
        elif name == "/stats":
            self.console.print_json(json.dumps(metrics.snapshot()))
        else:
            self.console.print(f"[red]Unknown command:[/red] {escape(name)}")

        if o.last_error and name not in ("/voice", "/stop"):
            self.console.print(f"[red]{escape(o.last_error)}[/red]")
        return True

    async def _persona(self, arg: str) -> None:
        current = self.orchestrator.settings.selected_persona
        if not arg:
            for persona in Persona:
                marker = "→" if persona is current else " "
                self.console.print(f"{marker} {persona.value:<10} {persona.display_name}")
            return
        try:
            persona = Persona.parse(arg)
        except ValueError as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
            return
        await self.orchestrator.switch_persona(persona)
        self.console.print(f"[dim]Persona: {persona.display_name}[/dim]")
        self._print_message(persona.greeting, "assistant")

    async def _list_sessions(self) -> None:
        sessions = await self.orchestrator.persistence.list()
        self._sessions_shown = [s.id for s in sessions]
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Persona")
        for i, session in enumerate(sessions, 1):
            current = session.id == self.orchestrator.session.id
            table.add_row(
                str(i),
                f"[bold]{escape(session.title)}[/bold]" if current else escape(session.title),
                str(session.message_count),
                session.persona.display_name,
            )
        self.console.print(table)

    def _resolve_session(self, arg: str) -> str | None:
        if arg.isdigit() and 0 < int(arg) <= len(self._sessions_shown):
            return self._sessions_shown[int(arg) - 1]
        return arg if arg in self._sessions_shown else None


def build_orchestrator(
    db_path: str | None = None, audio_file: str | None = None
) -> ChatOrchestrator:
    backend = get_generation_backend()
    persistence = PersistenceManager(SessionStore(db_path))
    recorder = None
    if audio_file:
        source = get_transcription_source(pcm_file_source(Path(audio_file)))
        recorder = VoiceRecorder(source)
    return ChatOrchestrator(backend, persistence, recorder=recorder)


def main():
    parser = argparse.ArgumentParser(description="Colloquy terminal chat")
    parser.add_argument("--db", default=None, help="Session database path")
    parser.add_argument(
        "--audio-file", default=None, help="Raw PCM file used as voice input"
    )
    parser.add_argument("--log-level", default=None, help="Log level (default WARNING)")
    args = parser.parse_args()

    setup_logging(args.log_level)
    cli = ColloquyCLI(build_orchestrator(args.db, args.audio_file))
    try:
        asyncio.run(cli.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
