from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

from markdown_it import MarkdownIt
from markdown_it.token import Token
from rich.cells import cell_len
from rich.style import Style
from rich.text import Text

PLAIN = Style()
BOLD = Style(bold=True)
ITALIC = Style(italic=True)
STRIKE = Style(strike=True)
LINK_STYLE = Style(underline=True, color="blue")
HEADING_STYLE = Style(bold=True, color="cyan")
MAJOR_HEADING_STYLE = Style(bold=True, underline=True, color="cyan")
CODE_INLINE_STYLE = Style(color="yellow", reverse=True)
CODE_BLOCK_STYLE = Style(color="green")
QUOTE_STYLE = Style(dim=True)
RULE_STYLE = Style(dim=True)
IMAGE_STYLE = Style(italic=True)
TABLE_BORDER_STYLE = Style(color="grey50")
TABLE_HEADER_STYLE = Style(bold=True, color="cyan")

INLINE_STYLES = {"strong": BOLD, "em": ITALIC, "s": STRIKE, "link": LINK_STYLE}

BULLET = "• "
QUOTE_PREFIX = "│ "
RULE_CHAR = "─"
TABLE_COLUMN_FLOOR = 3
TAB_SPACES = "    "
WIDE_PLACEHOLDER = "?"
WORD_RE = re.compile(r"\S+")

MARKDOWN = MarkdownIt("commonmark").enable(["table", "strikethrough"])


@dataclass(frozen=True)
class Span:
    text: str
    style: Style = PLAIN


@dataclass(frozen=True)
class DisplayLine:
    spans: tuple[Span, ...] = ()

    @property
    def plain(self) -> str:
        return "".join(span.text for span in self.spans)

    @property
    def width(self) -> int:
        return cell_len(self.plain)

    def to_text(self) -> Text:
        text = Text(no_wrap=True, overflow="crop")
        for span in self.spans:
            text.append(span.text, style=span.style)
        return text


BLANK = DisplayLine()


def expand_tabs(text: str) -> str:
    return text.replace("\t", TAB_SPACES)


def fit_glyphs(spans: tuple[Span, ...], width: int) -> tuple[Span, ...]:
    if cell_len("".join(span.text for span in spans)) <= width:
        return spans
    # a glyph wider than the whole line is shown as a one-cell placeholder
    return tuple(
        Span("".join(char if cell_len(char) <= 1 else WIDE_PLACEHOLDER for char in span.text), span.style)
        for span in spans
    )


def _cut(text: str, start: int, end: int, width: int) -> int:
    used = 0
    index = start
    while index < end:
        char_width = cell_len(text[index])
        if used + char_width > width and index > start:
            break
        used += char_width
        index += 1
    return index


def wrap_ranges(text: str, width: int) -> list[tuple[int, int]]:
    width = max(width, 1)
    ranges: list[tuple[int, int]] = []
    line_start = line_end = -1
    line_width = 0
    for match in WORD_RE.finditer(text):
        start, end = match.span()
        word_width = cell_len(text[start:end])
        if line_start >= 0:
            gap_width = cell_len(text[line_end:start])
            if line_width + gap_width + word_width <= width:
                line_end = end
                line_width += gap_width + word_width
                continue
            ranges.append((line_start, line_end))
            line_start = -1
        while word_width > width and start < end:
            cut = _cut(text, start, end, width)
            ranges.append((start, cut))
            start = cut
            word_width = cell_len(text[start:end])
        if start < end:
            line_start, line_end, line_width = start, end, word_width
    if line_start >= 0:
        ranges.append((line_start, line_end))
    return ranges


def chunk_cells(line: str, width: int) -> list[str]:
    if not line:
        return [""]
    width = max(width, 1)
    chunks: list[str] = []
    start = 0
    while start < len(line):
        cut = _cut(line, start, len(line), width)
        chunks.append(line[start:cut])
        start = cut
    return chunks


def fit_column_widths(natural: list[int], width: int) -> list[int]:
    widths = [max(value, 1) for value in natural]
    if not widths:
        return widths
    overhead = 3 * len(widths) + 1
    while sum(widths) + overhead > width:
        widest = max(range(len(widths)), key=lambda index: widths[index])
        if widths[widest] <= TABLE_COLUMN_FLOOR:
            break
        widths[widest] -= 1
    return widths


def _border(widths: list[int], left: str, middle: str, right: str) -> DisplayLine:
    body = middle.join(RULE_CHAR * (value + 2) for value in widths)
    return DisplayLine((Span(f"{left}{body}{right}", TABLE_BORDER_STYLE),))


def _table_row(cells: list[str], widths: list[int], header: bool) -> list[DisplayLine]:
    wrapped: list[list[str]] = []
    for cell, width in zip(cells, widths):
        pieces = [cell[a:b] for a, b in wrap_ranges(cell, width)]
        wrapped.append(pieces or [""])
    height = max(len(pieces) for pieces in wrapped)
    bar = Span("│", TABLE_BORDER_STYLE)

    lines: list[DisplayLine] = []
    for row_index in range(height):
        spans: list[Span] = [bar]
        for pieces, width in zip(wrapped, widths):
            piece = pieces[row_index] if row_index < len(pieces) else ""
            slack = max(width - cell_len(piece), 0)
            if header:
                left = slack // 2
                padded = f"{' ' * left}{piece}{' ' * (slack - left)}"
                spans.append(Span(" "))
                spans.append(Span(padded, TABLE_HEADER_STYLE))
                spans.append(Span(" "))
            else:
                spans.append(Span(f" {piece}{' ' * slack} "))
            spans.append(bar)
        lines.append(DisplayLine(tuple(spans)))
    return lines


def layout_table(header: list[str], rows: list[list[str]], width: int) -> list[DisplayLine]:
    columns = max([len(header)] + [len(row) for row in rows])
    if columns == 0:
        return []
    header = header + [""] * (columns - len(header))
    rows = [row + [""] * (columns - len(row)) for row in rows]

    natural = [
        max(cell_len(row[index]) for row in [header] + rows)
        for index in range(columns)
    ]
    widths = fit_column_widths(natural, width)

    lines = [_border(widths, "┌", "┬", "┐")]
    lines.extend(_table_row(header, widths, header=True))
    lines.append(_border(widths, "├", "┼", "┤"))
    for row in rows:
        lines.extend(_table_row(row, widths, header=False))
        lines.append(_border(widths, "├", "┼", "┤"))
    lines[-1] = _border(widths, "└", "┴", "┘")
    return lines


def _slice_runs(plain: str, runs: list[tuple[int, int, Style]], start: int, end: int) -> tuple[Span, ...]:
    spans: list[Span] = []
    for run_start, run_end, style in runs:
        low = max(start, run_start)
        high = min(end, run_end)
        if low < high:
            spans.append(Span(plain[low:high], style))
    return tuple(spans)


@dataclass
class _ListLevel:
    ordered: bool
    next_number: int = 1
    marker: str = BULLET
    pending: bool = False


@dataclass
class _TableModel:
    header: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    current: list[str] = field(default_factory=list)
    in_header: bool = False


class _Layout:
    def __init__(self, width: int) -> None:
        self.width = max(width, 1)
        self.lines: list[DisplayLine] = []
        self.segments: list[tuple[str, Style]] = []
        self.stack: list[Style] = []
        self.block_style = PLAIN
        self.lists: list[_ListLevel] = []
        self.quote_depth = 0
        self.table: _TableModel | None = None

    def feed(self, tokens: list[Token]) -> None:
        for token in tokens:
            self._block(token)
            if token.nesting <= 0 and token.level == 0 and token.type != "inline":
                self._blank()

    def finish(self) -> tuple[DisplayLine, ...]:
        self._flush()
        while self.lines and not self.lines[-1].spans:
            self.lines.pop()
        return tuple(self.lines)

    def _block(self, token: Token) -> None:
        kind = token.type
        if kind == "inline":
            self._inline(token.children or [])
        elif kind == "heading_open":
            self._flush()
            level = int(token.tag[1:]) if token.tag[1:].isdigit() else 6
            self.block_style = MAJOR_HEADING_STYLE if level <= 2 else HEADING_STYLE
        elif kind == "heading_close":
            self._flush()
            self.block_style = PLAIN
        elif kind == "paragraph_close":
            self._flush()
        elif kind in ("bullet_list_open", "ordered_list_open"):
            self._flush()
            ordered = kind == "ordered_list_open"
            start = token.attrGet("start") if ordered else None
            self.lists.append(_ListLevel(ordered=ordered, next_number=int(start or 1)))
        elif kind in ("bullet_list_close", "ordered_list_close"):
            self._flush()
            if self.lists:
                self.lists.pop()
        elif kind == "list_item_open":
            self._flush()
            if self.lists:
                level = self.lists[-1]
                level.marker = f"{level.next_number}. " if level.ordered else BULLET
                level.next_number += 1
                level.pending = True
        elif kind == "list_item_close":
            self._flush()
            if self.lists:
                self.lists[-1].pending = False
        elif kind == "blockquote_open":
            self._flush()
            self.quote_depth += 1
        elif kind == "blockquote_close":
            self._flush()
            self.quote_depth = max(self.quote_depth - 1, 0)
        elif kind in ("fence", "code_block"):
            self._flush()
            self._preformatted(token.content, CODE_BLOCK_STYLE)
        elif kind == "html_block":
            self._flush()
            self._preformatted(token.content, PLAIN)
        elif kind == "hr":
            self._flush()
            self._rule()
        elif kind == "table_open":
            self._flush()
            self.table = _TableModel()
        elif self.table is not None:
            self._table_token(kind)

    def _table_token(self, kind: str) -> None:
        table = self.table
        if table is None:
            return
        if kind == "thead_open":
            table.in_header = True
        elif kind == "thead_close":
            table.in_header = False
        elif kind == "tr_open":
            table.current = []
        elif kind in ("th_close", "td_close"):
            table.current.append("".join(text for text, _ in self.segments).strip())
            self.segments = []
        elif kind == "tr_close":
            if table.in_header:
                table.header = table.current
            else:
                table.rows.append(table.current)
            table.current = []
        elif kind == "table_close":
            self.table = None
            first, rest, available = self._prefixes()
            rendered = layout_table(table.header, table.rows, available)
            for index, line in enumerate(rendered):
                self._emit((first if index == 0 else rest) + line.spans)
            if rendered:
                self._consume_marker()

    def _inline(self, children: list[Token]) -> None:
        for token in children:
            kind = token.type
            if kind == "text" or kind == "html_inline":
                self._add(token.content)
            elif kind == "softbreak":
                self._add(" ")
            elif kind == "hardbreak":
                self._add("\n")
            elif kind == "code_inline":
                self.segments.append((expand_tabs(token.content), CODE_INLINE_STYLE))
            elif kind == "image":
                self.segments.append((f"[{expand_tabs(token.content)}]", IMAGE_STYLE))
            elif kind.endswith("_open") and kind[:-5] in INLINE_STYLES:
                self.stack.append(INLINE_STYLES[kind[:-5]])
            elif kind.endswith("_close") and kind[:-6] in INLINE_STYLES:
                if self.stack:
                    self.stack.pop()
            elif token.content:
                self._add(token.content)

    def _add(self, text: str) -> None:
        if text:
            self.segments.append((expand_tabs(text), Style.combine([self.block_style, *self.stack])))

    def _prefixes(self) -> tuple[tuple[Span, ...], tuple[Span, ...], int]:
        quote: tuple[Span, ...] = ()
        if self.quote_depth:
            quote = (Span(QUOTE_PREFIX * self.quote_depth, QUOTE_STYLE),)
        first = rest = quote
        if self.lists:
            level = self.lists[-1]
            indent = "  " * (len(self.lists) - 1)
            marker = level.marker if level.pending else " " * cell_len(level.marker)
            first = quote + (Span(f"{indent}{marker}"),)
            rest = quote + (Span(f"{indent}{' ' * cell_len(level.marker)}"),)
        available = self.width - cell_len("".join(span.text for span in rest))
        if available < 1:
            return (), (), self.width
        return first, rest, available

    def _consume_marker(self) -> None:
        if self.lists:
            self.lists[-1].pending = False

    def _emit(self, spans: tuple[Span, ...]) -> None:
        self.lines.append(DisplayLine(spans))

    def _blank(self) -> None:
        if self.lines and self.lines[-1].spans:
            self.lines.append(BLANK)

    def _flush(self) -> None:
        segments = self.segments
        self.segments = []
        if not segments or self.table is not None:
            return

        plain = "".join(text for text, _ in segments)
        runs: list[tuple[int, int, Style]] = []
        position = 0
        for text, style in segments:
            runs.append((position, position + len(text), style))
            position += len(text)

        first, rest, available = self._prefixes()
        ranges: list[tuple[int, int]] = []
        offset = 0
        for piece in plain.split("\n"):
            ranges.extend((offset + a, offset + b) for a, b in wrap_ranges(piece, available))
            offset += len(piece) + 1

        for index, (start, end) in enumerate(ranges):
            spans = (first if index == 0 else rest) + _slice_runs(plain, runs, start, end)
            self._emit(fit_glyphs(spans, self.width))
        if ranges:
            self._consume_marker()

    def _preformatted(self, content: str, style: Style) -> None:
        first, rest, available = self._prefixes()
        source = content[:-1] if content.endswith("\n") else content
        emitted = 0
        for line in source.split("\n"):
            for chunk in chunk_cells(expand_tabs(line), available):
                prefix = first if emitted == 0 else rest
                self._emit(fit_glyphs(prefix + ((Span(chunk, style),) if chunk else ()), self.width))
                emitted += 1
        self._consume_marker()

    def _rule(self) -> None:
        first, _, available = self._prefixes()
        self._emit(first + (Span(RULE_CHAR * available, RULE_STYLE),))
        self._consume_marker()


@lru_cache(maxsize=32)
def render(markdown_text: str, width: int) -> tuple[DisplayLine, ...]:
    if not markdown_text.strip():
        return ()
    layout = _Layout(width)
    layout.feed(MARKDOWN.parse(markdown_text))
    return layout.finish()


@lru_cache(maxsize=32)
def render_plain(text: str, width: int) -> tuple[DisplayLine, ...]:
    width = max(width, 1)
    lines: list[DisplayLine] = []
    for source in text.splitlines():
        source = source.expandtabs(len(TAB_SPACES))
        ranges = wrap_ranges(source, width)
        if not ranges:
            lines.append(BLANK)
            continue
        lines.extend(DisplayLine(fit_glyphs((Span(source[a:b]),), width)) for a, b in ranges)
    while lines and not lines[-1].spans:
        lines.pop()
    return tuple(lines)
