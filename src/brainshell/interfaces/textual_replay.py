from __future__ import annotations

from brainshell.domain.models import Session
from brainshell.interfaces.cli import format_event_line, format_replay

try:
    from textual.app import App, ComposeResult
    from textual.containers import Horizontal, Vertical
    from textual.widgets import DataTable, Footer, Static, TextArea
except (ImportError, ModuleNotFoundError) as error:  # pragma: no cover - runtime import guard
    raise RuntimeError(
        "The textual replay viewer needs the 'textual' package. Install the runtime dependencies."
    ) from error


def event_rows(session: Session) -> list[tuple[str, str, str, str]]:
    rows: list[tuple[str, str, str, str]] = []
    for event in session.events:
        metadata = event.metadata or {}
        details = ", ".join(f"{key}={value}" for key, value in metadata.items())
        rows.append((event.timestamp, event.from_state.value, event.to_state.value, details[:160]))
    return rows


def transcript_text(session: Session) -> str:
    if not session.messages:
        return "(no messages recorded)"
    chunks = [f"[{message.get('role', '?')}]\n{message.get('content', '')}" for message in session.messages]
    return "\n\n".join(chunks)


class SessionReplayApp(App[None]):
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("ctrl+q", "quit", "Quit"),
    ]

    CSS = """
    Screen { layout: vertical; }
    #summary { height: auto; border: round #4ea1ff; padding: 0 1; }
    #body { height: 1fr; }
    #events { width: 55%; border: round #f5a623; }
    #transcript { width: 45%; border: round #47c26b; }
    .title { padding: 0 1; }
    """

    def __init__(self, session: Session) -> None:
        super().__init__()
        self._session = session

    def compose(self) -> ComposeResult:
        summary = format_replay(self._session).split("\nEvents:")[0]
        yield Static(summary, id="summary")
        with Horizontal(id="body"):
            with Vertical(id="events"):
                yield Static("Transitions", classes="title")
                yield DataTable(id="event_table")
            with Vertical(id="transcript"):
                yield Static("Conversation", classes="title")
                yield TextArea(transcript_text(self._session), read_only=True, show_line_numbers=False)
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#event_table", DataTable)
        table.add_columns("time", "from", "to", "details")
        for row in event_rows(self._session):
            table.add_row(*row)
        self.title = f"brainshell replay {self._session.session_id}"
        self.sub_title = format_event_line(self._session.events[-1]) if self._session.events else ""


def run_textual_replay(session: Session) -> None:
    SessionReplayApp(session).run()
