import logging
import threading
from typing import Optional, Tuple

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static, TextArea

from .commands import Command
from .engine import Model
from .messages import (
    CreatePost,
    EditPost,
    KeyPressed,
    MediaTick,
    Message,
    ReplyPost,
    Resized,
    SaveProfile,
)
from .state import HostRequest
from .view import render_screen

logger = logging.getLogger("fedirant.app")

FRAME_INTERVAL = 0.25


def key_token(key: str, character: Optional[str]) -> str:
    """The engine's key token for a Textual key event."""
    if character and len(character) == 1 and character.isprintable() and character != " ":
        return character
    return key


class ComposeDialog(ModalScreen):
    """Modal dialog for writing a post, a reply or an edit."""

    BINDINGS = [
        Binding("ctrl+s", "submit", "Send", show=False),
        Binding("escape", "cancel", "Cancel", show=False),
    ]

    def __init__(self, title: str, initial: str = "", context: str = ""):
        super().__init__()
        self.dialog_title = title
        self.initial = initial
        self.context = context

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static(self.dialog_title, id="dialog-title")
            if self.context:
                yield Static(self.context, id="dialog-context")
            yield TextArea(id="post-textarea")
            yield Static("\\[ctrl+s] send | \\[esc] cancel", classes="vim-hints")
            yield Static("", id="status-message", classes="status-message")
            with Container(id="action-buttons"):
                yield Button("📤 Post", variant="primary", id="post-button")
                yield Button("❌ Cancel", id="cancel-button")

    def on_mount(self) -> None:
        textarea = self.query_one("#post-textarea", TextArea)
        if self.initial:
            textarea.text = self.initial
        textarea.focus()

    def _show_status(self, text: str, error: bool = False) -> None:
        status = self.query_one("#status-message", Static)
        status.update(text)
        status.set_class(error, "error")

    def action_submit(self) -> None:
        content = self.query_one("#post-textarea", TextArea).text.strip()
        if not content:
            self._show_status("⚠ Post cannot be empty!", error=True)
            return
        self.dismiss(content)

    def action_cancel(self) -> None:
        self.dismiss(None)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "post-button":
            self.action_submit()
        elif event.button.id == "cancel-button":
            self.action_cancel()


class ProfileEditDialog(ModalScreen):
    """Modal dialog for the own display name and bio."""

    BINDINGS = [
        Binding("ctrl+s", "submit", "Save", show=False),
        Binding("escape", "cancel", "Cancel", show=False),
    ]

    def __init__(self, display_name: str = "", bio: str = ""):
        super().__init__()
        self.display_name = display_name
        self.bio = bio

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static("✏️ Edit Profile", id="dialog-title")
            yield Input(value=self.display_name, placeholder="Display name", id="name-input")
            yield TextArea(id="bio-textarea")
            yield Static("\\[ctrl+s] save | \\[esc] cancel", classes="vim-hints")
            with Container(id="action-buttons"):
                yield Button("💾 Save", variant="primary", id="save-button")
                yield Button("❌ Cancel", id="cancel-button")

    def on_mount(self) -> None:
        self.query_one("#bio-textarea", TextArea).text = self.bio
        self.query_one("#name-input", Input).focus()

    def action_submit(self) -> None:
        name = self.query_one("#name-input", Input).value
        bio = self.query_one("#bio-textarea", TextArea).text
        self.dismiss((name, bio))

    def action_cancel(self) -> None:
        self.dismiss(None)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "save-button":
            self.action_submit()
        elif event.button.id == "cancel-button":
            self.action_cancel()


class QuitDialog(ModalScreen):
    BINDINGS = [
        Binding("y", "confirm", "Yes", show=False),
        Binding("n", "cancel", "No", show=False),
        Binding("escape", "cancel", "No", show=False),
    ]

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container", classes="small"):
            yield Static("Quit fedirant?", id="dialog-title")
            yield Static("\\[y] quit | \\[n] stay", classes="vim-hints")
            with Container(id="action-buttons"):
                yield Button("Quit", variant="error", id="quit-button")
                yield Button("Stay", id="stay-button")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "quit-button")


class FedirantApp(App):
    CSS_PATH = "main.tcss"
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit", show=False, priority=True),
    ]

    def __init__(self, model: Model, **kwargs):
        super().__init__(**kwargs)
        self.model = model

    def compose(self) -> ComposeResult:
        with Container(id="main"):
            yield Static("", id="screen")

    def on_mount(self) -> None:
        self.dispatch(Resized(width=self.size.width, height=self.size.height))
        for cmd in self.model.init():
            self.run_command(cmd)
        self.set_interval(FRAME_INTERVAL, self._tick)

    # --- engine plumbing ---

    def run_command(self, cmd: Command) -> None:
        """Run a command on a worker thread and feed its message back on the UI thread."""

        def worker() -> None:
            try:
                msg = cmd()
            except Exception:
                logger.exception("command raised")
                return
            if msg is not None:
                self.call_from_thread(self.dispatch, msg)

        threading.Thread(target=worker, daemon=True).start()

    def dispatch(self, msg: Message) -> None:
        _, cmds = self.model.update(msg)
        for cmd in cmds:
            self.run_command(cmd)
        status = self.model.take_status()
        if status:
            failed = "error" in status.lower() or "failed" in status or status.startswith("Could not")
            self.notify(status, severity="error" if failed else "information", timeout=3)
        request = self.model.take_request()
        if request is not None:
            self._open_request(request)
        self.refresh_screen()

    def refresh_screen(self) -> None:
        self.query_one("#screen", Static).update(render_screen(self.model))

    def _tick(self) -> None:
        if self.model.state.media.frames:
            self.dispatch(MediaTick())

    def _open_request(self, request: HostRequest) -> None:
        if request.kind == "post":
            self.push_screen(ComposeDialog("✨ Create New Post"), self._on_compose(lambda text: CreatePost(content=text)))
        elif request.kind == "reply":
            self.push_screen(
                ComposeDialog("💬 Reply", context=request.extra),
                self._on_compose(lambda text: ReplyPost(parent_id=request.target_id, content=text)),
            )
        elif request.kind == "edit":
            self.push_screen(
                ComposeDialog("✏️ Edit Post", initial=request.text),
                self._on_compose(lambda text: EditPost(post_id=request.target_id, content=text)),
            )
        elif request.kind == "profile":
            self.push_screen(ProfileEditDialog(request.text, request.extra), self._on_profile_edit)
        else:
            logger.warning("unknown host request %r", request.kind)

    def _on_compose(self, build):
        def done(text: Optional[str]) -> None:
            if text is not None:
                self.dispatch(build(text))
        return done

    def _on_profile_edit(self, result: Optional[Tuple[str, str]]) -> None:
        if result is not None:
            name, bio = result
            self.dispatch(SaveProfile(display_name=name, bio=bio))

    # --- host events ---

    def on_resize(self, event) -> None:
        self.dispatch(Resized(width=event.size.width, height=event.size.height))

    def on_key(self, event) -> None:
        if isinstance(self.screen, ModalScreen):
            return
        token = key_token(event.key, event.character)
        event.stop()
        if token == "q" and not self.model.is_detail_view() and not self.model.is_dialog_open():
            self.push_screen(QuitDialog(), self._on_quit)
            return
        self.dispatch(KeyPressed(key=token))

    def _on_quit(self, confirmed: Optional[bool]) -> None:
        if confirmed:
            self.exit()
