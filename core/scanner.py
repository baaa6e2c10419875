"""Command scanner for llmrt.

Turns free text into an ordered stream of TextSpan and CommandToken items.
The scanner is an explicit state machine rather than a regex so that a
<write> body is bounded by the literal "</write>" delimiter no matter what
the body itself contains.

    SCANNING --'<'--> TAG_OPEN --name + space--> *_ARG --'>'--> emit
                                                WRITE_ARG --'>'--> WRITE_BODY --'</write>'--> emit

Anything that does not complete (unknown tag name, newline or end of input
inside the argument, empty argument, unterminated write body) is malformed:
the '<' is kept as ordinary text and scanning resumes at the next character.

Text can be fed incrementally. Items are returned as soon as they are final;
a partially seen tag is held back until it resolves or finish() is called.
Offsets are absolute across all fed chunks.
"""

import re
from enum import Enum

from core.tool_protocol import COMMAND_KINDS, CommandToken, TextSpan


WRITE_CLOSE = "</write>"

_ARG_END_RE = re.compile(r"[>\r\n]")
_MAX_NAME_LEN = max(len(k) for k in COMMAND_KINDS)


class State(Enum):
    SCANNING = "scanning"
    TAG_OPEN = "tag_open"
    OPEN_ARG = "open_arg"
    WRITE_ARG = "write_arg"
    EXEC_ARG = "exec_arg"
    SEARCH_ARG = "search_arg"
    WRITE_BODY = "write_body"


_ARG_STATES = {
    "open": State.OPEN_ARG,
    "write": State.WRITE_ARG,
    "exec": State.EXEC_ARG,
    "search": State.SEARCH_ARG,
}


class Scanner:
    """Incremental command scanner. Not thread-safe; one instance per stream."""

    def __init__(self):
        self._buf = ""
        self._base = 0          # absolute offset of _buf[0]
        self._pos = 0           # next index in _buf to examine
        self._text_start = 0    # start of text not yet emitted
        self._state = State.SCANNING
        self._tag_start = 0
        self._name = ""
        self._kind = ""
        self._arg_start = 0
        self._argument = ""
        self._body_start = 0
        self._finished = False

    @property
    def state(self) -> State:
        return self._state

    def feed(self, chunk: str) -> list:
        """Append text and return every item that is now final."""
        if self._finished:
            raise RuntimeError("Scanner already finished")
        self._buf += chunk
        items = []
        self._run(items, final=False)
        return items

    def finish(self) -> list:
        """Signal end of input. Pending tags are resolved as malformed."""
        if self._finished:
            return []
        items = []
        self._run(items, final=True)
        self._finished = True
        return items

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _run(self, items: list, final: bool) -> None:
        buf = self._buf
        while True:
            if self._state is State.SCANNING:
                idx = buf.find("<", self._pos)
                if idx < 0:
                    self._pos = len(buf)
                    break
                self._tag_start = idx
                self._name = ""
                self._pos = idx + 1
                self._state = State.TAG_OPEN

            elif self._state is State.TAG_OPEN:
                if self._pos >= len(buf):
                    if not final:
                        break
                    self._malformed()
                    continue
                ch = buf[self._pos]
                if "a" <= ch <= "z" and len(self._name) < _MAX_NAME_LEN:
                    self._name += ch
                    self._pos += 1
                    if not any(k.startswith(self._name) for k in COMMAND_KINDS):
                        self._malformed()
                    continue
                if self._name in _ARG_STATES and ch.isspace() and ch not in "\r\n":
                    self._kind = self._name
                    self._arg_start = self._pos
                    self._state = _ARG_STATES[self._kind]
                    continue
                self._malformed()

            elif self._state is State.WRITE_BODY:
                idx = buf.find(WRITE_CLOSE, self._pos)
                if idx < 0:
                    if not final:
                        # a partial delimiter may straddle the chunk boundary
                        self._pos = max(self._body_start, len(buf) - len(WRITE_CLOSE) + 1)
                        break
                    self._malformed()
                    continue
                end = idx + len(WRITE_CLOSE)
                self._emit(items, end, body=buf[self._body_start:idx])

            else:
                m = _ARG_END_RE.search(buf, self._pos)
                if m is None:
                    if not final:
                        self._pos = len(buf)
                        break
                    self._malformed()
                    continue
                if m.group() != ">":
                    self._malformed()
                    continue
                argument = buf[self._arg_start:m.start()].strip()
                if not argument:
                    self._malformed()
                    continue
                self._argument = argument
                if self._state is State.WRITE_ARG:
                    self._body_start = m.end()
                    self._pos = m.end()
                    self._state = State.WRITE_BODY
                    continue
                self._emit(items, m.end())

        self._flush_text(items, final)

    def _malformed(self) -> None:
        """Treat the pending '<' as text and rescan from the next character."""
        self._state = State.SCANNING
        self._pos = self._tag_start + 1

    def _emit(self, items: list, end: int, body: str | None = None) -> None:
        start = self._tag_start
        if start > self._text_start:
            items.append(TextSpan(
                text=self._buf[self._text_start:start],
                start=self._base + self._text_start,
                end=self._base + start,
            ))
        items.append(CommandToken(
            kind=self._kind,
            argument=self._argument,
            start=self._base + start,
            end=self._base + end,
            original=self._buf[start:end],
            body=body,
        ))
        self._text_start = end
        self._pos = end
        self._state = State.SCANNING

    def _flush_text(self, items: list, final: bool) -> None:
        """Emit settled text and drop consumed input from the buffer."""
        if self._state is State.SCANNING or final:
            stop = len(self._buf)
        else:
            stop = self._tag_start
        if stop > self._text_start:
            items.append(TextSpan(
                text=self._buf[self._text_start:stop],
                start=self._base + self._text_start,
                end=self._base + stop,
            ))
            self._text_start = stop

        # Rebase so the buffer only holds undecided input
        cut = self._text_start
        if cut:
            self._buf = self._buf[cut:]
            self._base += cut
            self._pos -= cut
            self._tag_start -= cut
            self._arg_start -= cut
            self._body_start -= cut
            self._text_start = 0


def scan(text: str) -> list:
    """Scan a complete buffer into TextSpan and CommandToken items, in order."""
    scanner = Scanner()
    items = scanner.feed(text)
    items.extend(scanner.finish())
    return items


def tokens(text: str) -> list[CommandToken]:
    """Only the commands found in text."""
    return [item for item in scan(text) if isinstance(item, CommandToken)]
