#!/usr/bin/env python3
"""
whale - pick a docker container from a list, then act on it
- Stage 1: choose a container from `docker container ls -a`
- Stage 2: choose an action for that container (exit, copy its ID)
"""

import json
import os
import shutil
import subprocess
import sys
import termios
import time
import tty
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from platformdirs import user_config_dir

VERSION = "0.0.1"


# =============================================================================
# Error Registry
# =============================================================================

_errors: list[dict] = []


def log_error(category: str, message: str, context: dict | None = None) -> None:
    """Log a non-fatal error to the global registry"""
    _errors.append({
        "ts": time.time(),
        "cat": category,
        "msg": message,
        "ctx": context or {},
    })


def get_errors() -> list[dict]:
    """Get all logged errors"""
    return _errors


def clear_errors(category: str | None = None) -> int:
    """Clear errors in a category (all of them if None), returns count cleared"""
    global _errors
    before = len(_errors)
    if category is None:
        _errors = []
    else:
        _errors = [e for e in _errors if e["cat"] != category]
    return before - len(_errors)


def dump_errors() -> None:
    """Write logged errors to stderr as JSON, if any"""
    if _errors:
        sys.stderr.write(json.dumps({"errors": _errors}, indent=2) + "\n")


# =============================================================================
# Errors
# =============================================================================

class WhaleError(Exception):
    """Base class for errors surfaced to the operator"""


class MalformedRecord(WhaleError):
    """A listing row has too few fields to build a container"""


class EmptySelection(WhaleError):
    """Commit attempted on a list with no items"""


class ClipboardUnavailable(WhaleError):
    """No clipboard tool accepted the payload"""


class ConfigurationInvalid(WhaleError):
    """Configuration document is unreadable or has bad values"""


# =============================================================================
# Docker Data Model
# =============================================================================

MIN_RECORD_FIELDS = 3


@dataclass(frozen=True)
class Container:
    """One row of `docker container ls -a`"""
    ID: str
    Image: str
    Command: str
    Created: str = ""
    Status: str = ""
    # Never filled from the listing: port text can't be told apart from the
    # status columns once the row is split on whitespace.
    Ports: str = ""
    Names: str = ""

    @classmethod
    def from_line(cls, line: str) -> "Container":
        """Parse a listing row using the fixed column offsets of `docker container ls`.

        Tokens are split on runs of whitespace, so quoted commands and
        multi-word columns come out as several tokens:
        - 0: ID, 1: image, 2: command
        - 3..5: created ("2 days ago")
        - 6..9: status, only when the row has more than 10 tokens
        - last: name
        """
        fields = line.split()
        if len(fields) < MIN_RECORD_FIELDS:
            raise MalformedRecord(f"Expected at least {MIN_RECORD_FIELDS} fields, got {len(fields)}: {line!r}")

        status = ""
        if len(fields) > 10:
            status = " ".join(fields[6:10])

        return cls(
            ID=fields[0],
            Image=fields[1],
            Command=fields[2],
            Created=" ".join(fields[3:6]),
            Status=status,
            Ports="",
            Names=fields[-1],
        )

    def summary(self) -> str:
        """One-line fixed-width label used in the container list"""
        return f"{self.Names[:24]:<25} {self.Status[:19]:<20} {self.Image[:29]:<30} {self.ID[:12]}"


def listing_rows(text: str) -> list[str]:
    """Data rows of a listing, header line dropped"""
    lines = text.strip().split("\n")
    return lines[1:]


def parse_listing(text: str) -> list[Container]:
    """Parse every data row, skipping (and logging) malformed ones"""
    containers = []
    for line in listing_rows(text):
        try:
            containers.append(Container.from_line(line))
        except MalformedRecord as e:
            log_error("docker.container_parse", str(e), {"line": line[:200]})
    return containers


# =============================================================================
# Terminal Primitives
# =============================================================================

class Term:
    """ANSI escape code utilities for terminal manipulation"""

    CLEAR = "\033[H\033[2J"
    RESET = "\033[0m"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"

    # Key codes
    KEY_UP = "\x1b[A"
    KEY_DOWN = "\x1b[B"
    KEY_ENTER = "\r"
    KEY_NEWLINE = "\n"
    KEY_ESC = "\x1b"
    KEY_CTRL_C = "\x03"

    @staticmethod
    def write(text: str) -> None:
        """Write text at current cursor position"""
        print(text, end="", flush=True)

    @staticmethod
    def getch() -> str:
        """Read single keypress in raw mode.

        Bytes come straight from the fd so an escape sequence is one key.
        Typed-ahead keys are kept (TCSANOW, no input flush).
        """
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setraw(fd, termios.TCSANOW)
            data = os.read(fd, 1)
            # Handle escape sequences
            if data == b'\x1b':
                import select
                if select.select([fd], [], [], 0.1)[0]:
                    data += os.read(fd, 1)
                    if data[-1:] == b'[':
                        if select.select([fd], [], [], 0.1)[0]:
                            data += os.read(fd, 1)
            return data.decode("utf-8", errors="replace")
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    @staticmethod
    def style(text: str, code: str) -> str:
        """Wrap text in an SGR style code such as "32" or "1;36" """
        return f"\033[{code}m{text}{Term.RESET}"


class Screen:
    """Buffered frame - built in memory, returned or flushed once"""

    def __init__(self):
        self.buf: list[str] = []

    def write(self, text: str) -> None:
        """Add text to buffer"""
        self.buf.append(text)

    def writeln(self, text: str = "") -> None:
        """Add a full line to buffer"""
        self.buf.append(text + "\n")

    def text(self) -> str:
        """Whole frame as a single string"""
        return "".join(self.buf)


# =============================================================================
# Configuration
# =============================================================================

APP_NAME = "whale"
CONFIG_FILENAME = "config.json"
CONFIG_ENV = "WHALE_CONFIG"
DEFAULT_CONFIG_PATH = Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME

DEFAULT_CONFIG = """
{
    "Ui": {
        "cursorColor": "36",
        "branchColor": "1;34",
        "containerSelectedColor": "32",
        "actionSelectedColor": "33"
    }
}
"""

# JSON key -> UiConfig attribute
UI_KEYS = {
    "cursorColor": "cursor_color",
    "branchColor": "branch_color",
    "containerSelectedColor": "container_selected_color",
    "actionSelectedColor": "action_selected_color",
}


@dataclass(frozen=True)
class UiConfig:
    """Style codes used when rendering the selection lists"""
    cursor_color: str
    branch_color: str
    container_selected_color: str
    action_selected_color: str


def _config_path() -> Path:
    """User config file location, overridable through the environment"""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH


def _ui_section(document: str, source: str) -> dict:
    try:
        data = json.loads(document)
    except json.JSONDecodeError as e:
        raise ConfigurationInvalid(f"error parsing config file {source}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationInvalid(f"error parsing config file {source}: top level must be an object")
    ui = data.get("Ui", {})
    if not isinstance(ui, dict):
        raise ConfigurationInvalid(f"error parsing config file {source}: \"Ui\" must be an object")
    return ui


def load_config(path: Path | None = None) -> UiConfig:
    """Load UI styles: embedded defaults, then keys from the user file if present"""
    values = dict(_ui_section(DEFAULT_CONFIG, "<default>"))

    path = path or _config_path()
    if path.exists():
        try:
            document = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationInvalid(f"error reading config file {path}: {e}") from e
        values.update(_ui_section(document, str(path)))

    styles = {}
    for key, attr in UI_KEYS.items():
        value = values.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationInvalid(f"error parsing config file {path}: \"Ui.{key}\" must be a non-empty string")
        styles[attr] = value.strip()
    return UiConfig(**styles)


# =============================================================================
# Docker Backend
# =============================================================================

class Docker:
    """Docker CLI wrapper using subprocess"""

    BINARY = "docker"

    @staticmethod
    def _run(args: list[str], capture: bool = True) -> subprocess.CompletedProcess:
        """Run docker command"""
        cmd = [Docker.BINARY] + args
        return subprocess.run(
            cmd,
            capture_output=capture,
            text=True,
        )

    @staticmethod
    def _succeeds(args: list[str]) -> bool:
        """Run docker command, True when it exits 0"""
        try:
            result = Docker._run(args)
        except OSError as e:
            log_error("docker.command", f"docker {' '.join(args)}", {"error": str(e)})
            return False
        return result.returncode == 0

    @staticmethod
    def installed() -> bool:
        """Is the docker binary available"""
        return Docker._succeeds(["-v"])

    @staticmethod
    def running() -> bool:
        """Is the docker daemon answering"""
        return Docker._succeeds(["container", "ls"])

    @staticmethod
    def listing() -> str | None:
        """Raw `docker container ls -a` table, None on failure"""
        args = ["container", "ls", "-a"]
        try:
            result = Docker._run(args)
        except OSError as e:
            log_error("docker.command", f"docker {' '.join(args)}", {"error": str(e)})
            return None
        if result.returncode != 0:
            log_error("docker.command", f"docker {' '.join(args)}", {
                "returncode": result.returncode,
                "stderr": result.stderr.strip() if result.stderr else "",
            })
            return None
        return result.stdout

    @staticmethod
    def containers() -> list[Container] | None:
        """List all containers, None when docker could not be queried"""
        text = Docker.listing()
        if text is None:
            return None
        return parse_listing(text)


# =============================================================================
# Clipboard
# =============================================================================

class Clipboard:
    """System clipboard through the platform's copy tool"""

    @staticmethod
    def commands() -> list[list[str]]:
        """Candidate copy commands for this platform, in preference order"""
        if sys.platform == "darwin":
            return [["pbcopy"]]
        if os.name == "nt":
            return [["clip"]]
        return [
            ["wl-copy"],
            ["xclip", "-selection", "clipboard"],
            ["xsel", "--clipboard", "--input"],
        ]

    @staticmethod
    def copy(text: str) -> None:
        """Store text as clipboard contents, raising ClipboardUnavailable on failure"""
        if not text:
            raise ClipboardUnavailable("nothing to copy")

        tried = []
        for command in Clipboard.commands():
            if shutil.which(command[0]) is None:
                continue
            tried.append(command[0])
            try:
                proc = subprocess.run(
                    command,
                    input=text,
                    text=True,
                    check=False,
                )
            except OSError as e:
                log_error("clipboard.copy", str(e), {"command": command})
                continue
            if proc.returncode == 0:
                return
            log_error("clipboard.copy", f"{command[0]} exited with {proc.returncode}", {"command": command})

        if not tried:
            raise ClipboardUnavailable("error copying container ID: no clipboard tool found")
        raise ClipboardUnavailable(f"error copying container ID: {', '.join(tried)} failed")


# =============================================================================
# Selectable List Model
# =============================================================================

T = TypeVar("T")


class Intent(Enum):
    MOVE_UP = "up"
    MOVE_DOWN = "down"
    COMMIT = "commit"
    CANCEL = "cancel"


class SessionState(Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


KEY_INTENTS = {
    Term.KEY_UP: Intent.MOVE_UP,
    "i": Intent.MOVE_UP,
    Term.KEY_DOWN: Intent.MOVE_DOWN,
    "k": Intent.MOVE_DOWN,
    Term.KEY_ENTER: Intent.COMMIT,
    Term.KEY_NEWLINE: Intent.COMMIT,
    "q": Intent.CANCEL,
    Term.KEY_ESC: Intent.CANCEL,
    Term.KEY_CTRL_C: Intent.CANCEL,
}


def intent_for_key(key: str) -> Intent | None:
    """Map a keypress to a list intent, None for keys with no meaning"""
    return KEY_INTENTS.get(key)


@dataclass
class ListModel(Generic[T]):
    """Cursor over a list of items, committed or cancelled exactly once.

    The cursor starts on the last item. It wraps at both ends, and is -1
    only while the list is empty.
    """
    items: list[T] = field(default_factory=list)
    cursor: int = field(init=False, default=-1)
    state: SessionState = field(init=False, default=SessionState.ACTIVE)
    selected: T | None = field(init=False, default=None)

    def __post_init__(self):
        self.items = list(self.items)
        self.cursor = len(self.items) - 1

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def current(self) -> T | None:
        """Item under the cursor, None when empty"""
        if not self.items:
            return None
        return self.items[self.cursor]

    def move_up(self) -> None:
        if self.items:
            self.cursor = (self.cursor - 1) % len(self.items)

    def move_down(self) -> None:
        if self.items:
            self.cursor = (self.cursor + 1) % len(self.items)

    def commit(self) -> T:
        """Fix the item under the cursor as the selection"""
        if not self.items:
            raise EmptySelection("nothing to select: the list is empty")
        self.selected = self.items[self.cursor]
        self.state = SessionState.COMMITTED
        return self.selected

    def cancel(self) -> None:
        self.state = SessionState.CANCELLED

    def handle(self, intent: Intent | None) -> None:
        """Apply one input event; terminal states and unknown events are no-ops"""
        if not self.active:
            return
        if intent is Intent.MOVE_UP:
            self.move_up()
        elif intent is Intent.MOVE_DOWN:
            self.move_down()
        elif intent is Intent.COMMIT:
            self.commit()
        elif intent is Intent.CANCEL:
            self.cancel()


# =============================================================================
# Rendering
# =============================================================================

CURSOR_GLYPH = ">"


def render_frame(
    model: ListModel[Any],
    label: Callable[[Any], str],
    ui: UiConfig,
    highlight: str,
    header: str,
) -> str:
    """Full-screen frame for a list: header, blank line, one row per item"""
    scr = Screen()
    scr.write(Term.CLEAR)
    scr.writeln(Term.style(header, ui.branch_color))
    scr.writeln()

    for i, item in enumerate(model.items):
        text = label(item)
        if i == model.cursor:
            scr.writeln(f"{Term.style(CURSOR_GLYPH, ui.cursor_color)} {Term.style(text, highlight)}")
        else:
            scr.writeln(f"  {text}")

    return scr.text()


def render_containers(model: ListModel[Container], ui: UiConfig) -> str:
    """Frame for the container stage"""
    return render_frame(model, Container.summary, ui, ui.container_selected_color, "Choose a container:")


def render_actions(model: ListModel[str], container: Container, ui: UiConfig) -> str:
    """Frame for the action stage, titled with the chosen container"""
    return render_frame(model, str, ui, ui.action_selected_color, f"Container: {container.Names}")


# =============================================================================
# Action Resolver
# =============================================================================

ACTION_EXIT = "Exit"
ACTION_COPY_ID = "Copy container ID"
ACTIONS = (ACTION_EXIT, ACTION_COPY_ID)


@dataclass(frozen=True)
class RequestExit:
    """Stop here, nothing else to do"""


@dataclass(frozen=True)
class RequestClipboardCopy:
    """Copy a container ID to the clipboard"""
    identifier: str


@dataclass(frozen=True)
class NoEffect:
    """Label outside the known action set"""


Effect = RequestExit | RequestClipboardCopy | NoEffect


def resolve_action(label: str, container: Container) -> Effect:
    """Map an action label to the effect it requests for this container"""
    if label == ACTION_EXIT:
        return RequestExit()
    if label == ACTION_COPY_ID:
        return RequestClipboardCopy(container.ID)
    return NoEffect()


def apply_effect(effect: Effect) -> int:
    """Execute an effect, returning the exit code. Clipboard failures propagate."""
    if isinstance(effect, RequestClipboardCopy):
        Clipboard.copy(effect.identifier)
        print("Container ID copied to clipboard")
    return 0


# =============================================================================
# Sessions
# =============================================================================

def run_session(
    model: ListModel[T],
    render: Callable[[ListModel[T]], str],
    read_key: Callable[[], str] = Term.getch,
    write: Callable[[str], None] = Term.write,
) -> T | None:
    """Drive a list with keypresses until commit (returns the item) or cancel (None)"""
    write(Term.HIDE_CURSOR)
    try:
        while model.active:
            write(render(model))
            model.handle(intent_for_key(read_key()))
    finally:
        write(Term.SHOW_CURSOR)
    return model.selected


def choose_container(containers: list[Container], ui: UiConfig, **io) -> Container | None:
    """Container stage"""
    model = ListModel(containers)
    return run_session(model, lambda m: render_containers(m, ui), **io)


def choose_action(container: Container, ui: UiConfig, **io) -> str | None:
    """Action stage for an already chosen container"""
    model = ListModel(list(ACTIONS))
    return run_session(model, lambda m: render_actions(m, container, ui), **io)


# =============================================================================
# CLI
# =============================================================================

def usage() -> int:
    """Display usage information"""
    output_lines = [
        "Usage: whale [options]",
        "──────────────────────────────────────────────",
        "- whale                    ==> choose a container, then an action",
        "- whale [--run | -r]       ==> choose both, print the action only",
        "- whale [--help | -h]      ==> show this help",
        "- whale [--version | -v]   ==> show version",
        "──────────────────────────────────────────────",
        "Keys: up/i down/k move, enter select, q/esc quit",
    ]
    print("\n".join(output_lines))
    return 0


def fail(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def interactive(containers: list[Container], ui: UiConfig) -> int:
    """Choose a container, choose an action, run it"""
    try:
        container = choose_container(containers, ui)
    except WhaleError as e:
        return fail(f"Error choosing container: {e}")
    if container is None:
        return 0

    try:
        action = choose_action(container, ui)
    except WhaleError as e:
        return fail(f"Error choosing action: {e}")
    if action is None:
        return 0

    try:
        return apply_effect(resolve_action(action, container))
    except WhaleError as e:
        return fail(f"Error doing action: {e}")


def flag_mode(flag: str, containers: list[Container], ui: UiConfig) -> int:
    """Handle a command-line flag; unknown flags do nothing"""
    if flag in ("--run", "-r"):
        try:
            container = choose_container(containers, ui)
        except WhaleError as e:
            return fail(f"Error choosing container: {e}")
        if container is None:
            return 0
        try:
            action = choose_action(container, ui)
        except WhaleError as e:
            return fail(f"Error choosing action: {e}")
        if action is not None:
            print(f"Action selected: {action}")
    elif flag in ("--help", "-h"):
        return usage()
    elif flag in ("--version", "-v"):
        print(VERSION)
    return 0


def run(argv: list[str]) -> int:
    """Whole program, returns the process exit code"""
    try:
        ui = load_config()
    except ConfigurationInvalid as e:
        return fail(str(e))

    if not Docker.installed():
        return fail("Docker is not installed")
    if not Docker.running():
        return fail("Docker is not running")

    containers = Docker.containers()
    if containers is None:
        return fail("Error getting containers")

    if argv:
        return flag_mode(argv[0], containers, ui)
    return interactive(containers, ui)


def main() -> None:
    """Main entry point"""
    code = run(sys.argv[1:])
    # Output errors to stderr as JSON if any
    dump_errors()
    sys.exit(code)


if __name__ == "__main__":
    main()
