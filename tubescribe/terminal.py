from __future__ import annotations

import codecs
import logging
import os
import queue
import select
import sys
import termios
import threading
import tty
from dataclasses import dataclass
from typing import TextIO, Union

logger = logging.getLogger(__name__)

MOUSE_ON = "\x1b[?1000h\x1b[?1006h"
MOUSE_OFF = "\x1b[?1006l\x1b[?1000l"
CSI_PARAMETER_CHARS = "0123456789;:<=>?"
MAX_READ_BYTES = 4096

ESCAPE_KEYS = {
    "[A": "UP",
    "[B": "DOWN",
    "[C": "RIGHT",
    "[D": "LEFT",
    "OA": "UP",
    "OB": "DOWN",
    "OC": "RIGHT",
    "OD": "LEFT",
    "[H": "HOME",
    "[F": "END",
    "OH": "HOME",
    "OF": "END",
    "[1~": "HOME",
    "[7~": "HOME",
    "[4~": "END",
    "[8~": "END",
    "[3~": "DELETE",
    "[5~": "PGUP",
    "[6~": "PGDN",
    "[Z": "SHTAB",
}


@dataclass(frozen=True)
class KeyEvent:
    key: str


@dataclass(frozen=True)
class MouseEvent:
    kind: str
    x: int
    y: int


@dataclass(frozen=True)
class Tick:
    pass


InputEvent = Union[KeyEvent, MouseEvent, Tick]


def decode_key(char: str) -> KeyEvent | None:
    if char in {"\r", "\n"}:
        return KeyEvent("ENTER")
    if char == "\t":
        return KeyEvent("TAB")
    if char in {"\x7f", "\b"}:
        return KeyEvent("BACKSPACE")
    if char == "\x03":
        return KeyEvent("QUIT")
    if char == "\x1b":
        return KeyEvent("ESC")
    if not char.isprintable():
        return None
    return KeyEvent(char)


def decode_mouse(sequence: str) -> MouseEvent | None:
    if sequence.endswith("m"):
        return None
    try:
        button, x, y = (int(part) for part in sequence[2:-1].split(";"))
    except ValueError:
        return None
    if button & 64:
        kind = "SCROLL_DOWN" if button & 1 else "SCROLL_UP"
    elif button & 3 == 0 and not button & 32:
        kind = "CLICK"
    else:
        return None
    return MouseEvent(kind, max(x - 1, 0), max(y - 1, 0))


def decode_escape(sequence: str) -> KeyEvent | MouseEvent | None:
    if not sequence:
        return KeyEvent("ESC")
    if sequence.startswith("[<") and sequence[-1] in "Mm":
        return decode_mouse(sequence)
    key = ESCAPE_KEYS.get(sequence)
    if key is None:
        logger.debug("ignoring unknown escape sequence %r", sequence)
        return None
    return KeyEvent(key)


def _escape_end(text: str, start: int) -> int:
    if start >= len(text):
        return start
    lead = text[start]
    if lead == "O":
        return min(start + 2, len(text))
    if lead != "[":
        return start
    index = start + 1
    while index < len(text) and text[index] in CSI_PARAMETER_CHARS:
        index += 1
    return min(index + 1, len(text))


def parse_input(text: str) -> list[KeyEvent | MouseEvent]:
    events: list[KeyEvent | MouseEvent] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char != "\x1b":
            key_event = decode_key(char)
            if key_event is not None:
                events.append(key_event)
            index += 1
            continue
        end = _escape_end(text, index + 1)
        event = decode_escape(text[index + 1 : end])
        if event is not None:
            events.append(event)
        index = end
    return events


class InputSource:
    def __init__(
        self,
        stream: TextIO | None = None,
        output: TextIO | None = None,
        enable_mouse: bool = True,
    ) -> None:
        self.stream = stream or sys.stdin
        self.output = output or sys.stdout
        self.enable_mouse = enable_mouse
        self.events: queue.Queue[InputEvent] = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self.enable_mouse:
            self._write(MOUSE_ON)
        self._thread = threading.Thread(target=self._reader, name="input-reader", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(0.5)
            self._thread = None
        if self.enable_mouse:
            self._write(MOUSE_OFF)

    def poll(self, timeout: float = 0.1) -> InputEvent:
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return Tick()

    def feed(self, text: str) -> None:
        for event in parse_input(text):
            self.events.put(event)

    def _write(self, sequence: str) -> None:
        try:
            self.output.write(sequence)
            self.output.flush()
        except OSError as exc:
            logger.debug("could not toggle mouse reporting: %s", exc)

    def _reader(self) -> None:
        try:
            fd = self.stream.fileno()
            old_settings = termios.tcgetattr(fd)
        except (OSError, ValueError, termios.error) as exc:
            logger.warning("terminal input unavailable: %s", exc)
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        try:
            tty.setcbreak(fd)
            while not self._stop_event.is_set():
                ready, _, _ = select.select([fd], [], [], 0.05)
                if not ready:
                    continue
                data = os.read(fd, 1024)
                if not data:
                    break
                while len(data) < MAX_READ_BYTES and select.select([fd], [], [], 0.005)[0]:
                    more = os.read(fd, 1024)
                    if not more:
                        break
                    data += more
                self.feed(decoder.decode(data))
        finally:
            try:
                termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
            except termios.error as exc:
                logger.debug("could not restore terminal settings: %s", exc)
