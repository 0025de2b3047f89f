"""Terminal UI for the interactive note search."""

from pathlib import Path
from typing import Optional, cast

from rich.markup import escape
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import Label, RichLog, TextArea

from .config import TICK_RATE, Settings
from .document import NoteDocument
from .loop import EventKind, LoopEvent, SearchLoop


class SearchScreen(Screen):
    AUTO_FOCUS = None

    def compose(self) -> ComposeResult:
        with Vertical(classes="main-container"):
            with Horizontal(classes="top-bar"):
                yield Label("🔍 Note Search", id="mode-label")
                yield Label("", id="status")

            with Horizontal(classes="content-container", id="search-layout"):
                with Vertical(classes="search-results-panel"):
                    yield RichLog(id="results", auto_scroll=False, markup=True)
                with Vertical(classes="search-preview-panel"):
                    yield TextArea(id="preview", read_only=True)

            with Horizontal(classes="search-container"):
                yield Label("", id="search-input")

    def on_mount(self) -> None:
        # Keys go to the app bindings, never to the panes
        for widget in self.query("RichLog, TextArea"):
            widget.can_focus = False
        cast(SearchApp, self.app).redraw()


class SearchApp(App):
    CSS_PATH = "styles.tcss"

    SCREENS = {
        "search": SearchScreen,
    }

    BINDINGS = [
        Binding("up", "navigate_up", "Previous", show=False, priority=True),
        Binding("down", "navigate_down", "Next", show=False, priority=True),
        Binding("enter", "accept", "Open", priority=True),
        Binding("backspace", "backspace", "Delete", show=False, priority=True),
        Binding("escape", "cancel", "Cancel", priority=True),
        Binding("ctrl+c", "cancel", "Cancel", show=False, priority=True),
    ]

    def __init__(self, search_loop: SearchLoop, tick_rate: float = TICK_RATE):
        super().__init__()
        self.search_loop = search_loop
        self.tick_rate = tick_rate

    def on_mount(self) -> None:
        self.push_screen("search")
        self.set_interval(self.tick_rate, self.tick)

    def send(self, event: LoopEvent) -> None:
        """Feed one event to the search loop and redraw if it changed anything."""
        if not self.search_loop.handle(event):
            return
        if self.search_loop.exiting:
            self.exit(self.search_loop.result)
            return
        self.redraw()

    def on_key(self, event: events.Key) -> None:
        if event.is_printable and event.character:
            event.prevent_default()
            event.stop()
            self.send(LoopEvent(EventKind.CHARACTER, event.character))

    def tick(self) -> None:
        self.send(LoopEvent(EventKind.TICK))

    def action_navigate_up(self) -> None:
        self.send(LoopEvent(EventKind.NAVIGATE_UP))

    def action_navigate_down(self) -> None:
        self.send(LoopEvent(EventKind.NAVIGATE_DOWN))

    def action_backspace(self) -> None:
        self.send(LoopEvent(EventKind.BACKSPACE))

    def action_accept(self) -> None:
        self.send(LoopEvent(EventKind.ACCEPT))

    def action_cancel(self) -> None:
        self.send(LoopEvent(EventKind.CANCEL))

    def redraw(self) -> None:
        if not isinstance(self.screen, SearchScreen):
            return
        self.display_input()
        self.display_status()
        self.display_results()
        self.display_preview()

    def display_input(self) -> None:
        search_input = self.screen.query_one("#search-input", Label)
        search_input.update(f"[bold #cd5c5c]>[/] {escape(self.search_loop.buffer)}▏")

    def display_status(self) -> None:
        status = self.screen.query_one("#status", Label)
        loop = self.search_loop
        if loop.message:
            status.update(f"[bold #ff6b6b]{escape(loop.message)}[/]")
        else:
            status.update(f"[dim]{len(loop.matches)} of {loop.total} notes[/dim]")

    def display_results(self) -> None:
        results_log = self.screen.query_one("#results", RichLog)
        results_log.clear()

        if not self.search_loop.matches:
            results_log.write("No results found")
            return

        for i, doc in enumerate(self.search_loop.matches):
            if i == self.search_loop.selected:
                self.write_selected_result(results_log, doc)
            else:
                self.write_unselected_result(results_log, doc)

    def write_selected_result(self, log: RichLog, doc: NoteDocument) -> None:
        log.write(f"[bold #f5dede on #5d2828]{escape(doc.display_title)}[/]")
        log.write(f"[#f5dede on #5d2828]   {escape(self.short_path(doc))}[/]")

    def write_unselected_result(self, log: RichLog, doc: NoteDocument) -> None:
        log.write(f"[#cd5c5c]{escape(doc.display_title)}[/]")
        log.write(f"[dim]   {escape(self.short_path(doc))}[/dim]")

    def short_path(self, doc: NoteDocument) -> str:
        return doc.full_path.replace(str(Path.home()), "~", 1)

    def display_preview(self) -> None:
        preview_area = self.screen.query_one("#preview", TextArea)
        doc = self.search_loop.selection
        if doc is None:
            preview_area.clear()
            return

        header = f"{doc.display_title}\n{self.short_path(doc)}\n"
        header += f"Date: {doc.date}\n"
        if doc.author:
            header += f"Author: {doc.author}\n"
        if doc.tags:
            header += f"Tags: {', '.join(doc.tags)}\n"
        preview_area.load_text(header + "\n" + doc.body)
        preview_area.scroll_home(animate=False)


def run_interactive(settings: Settings) -> Optional[str]:
    """Run the search UI; returns the accepted note's path, "" or None if cancelled."""
    with SearchLoop(settings.database, settings.page_size) as search_loop:
        app = SearchApp(search_loop)
        return app.run()
