"""Markdown block segmentation
============================

Assistant replies are rendered as a short sequence of typed blocks rather than
as a single label.  Only three shapes are recognised:

* ``Text`` – consecutive non-blank lines, separated from the next paragraph by
  a blank line.
* ``Code`` – everything between two fence lines (three backticks), tagged with
  the language written after the opening fence.
* ``Heading`` – any line that starts with ``#``; the level is the number of
  leading hashes.

The segmenter is a pure function: it keeps no state between calls, never
raises for string input and degrades gracefully on malformed markup (an
unterminated fence simply becomes a code block at end of input).

The second half of the module turns blocks into toolkit independent
:class:`RenderSpan` values so the tkinter view and the tests share the same
layout rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, NamedTuple, Optional, Tuple

from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.token import Comment, Keyword, Name, Number, Operator, String
from pygments.util import ClassNotFound

FENCE_MARKER = "```"
HEADING_MARKER = "#"
MAX_STYLED_HEADING_LEVEL = 6


# ---------------------------------------------------------------------------
# Block model
# ---------------------------------------------------------------------------

class BlockKind(Enum):
    TEXT = "text"
    CODE = "code"
    HEADING = "heading"


@dataclass(frozen=True, slots=True)
class Block:
    """A single renderable segment of a reply.

    ``language`` only carries meaning for :attr:`BlockKind.CODE` blocks and
    ``level`` only for :attr:`BlockKind.HEADING` blocks; both keep their
    neutral defaults otherwise.
    """

    kind: BlockKind
    content: str
    language: str = ""
    level: int = 0

    @classmethod
    def text(cls, content: str) -> "Block":
        return cls(BlockKind.TEXT, content)

    @classmethod
    def code(cls, language: str, content: str) -> "Block":
        return cls(BlockKind.CODE, content, language=language)

    @classmethod
    def heading(cls, level: int, content: str) -> "Block":
        return cls(BlockKind.HEADING, content, level=level)

    def __str__(self) -> str:
        if self.kind is BlockKind.CODE:
            return f"Code({self.language!r}, {self.content!r})"
        if self.kind is BlockKind.HEADING:
            return f"Heading({self.level}, {self.content!r})"
        return f"Text({self.content!r})"


# ---------------------------------------------------------------------------
# Segmenter
# ---------------------------------------------------------------------------

def heading_level(line: str) -> int:
    """Number of leading ``#`` characters; not clamped."""

    return len(line) - len(line.lstrip(HEADING_MARKER))


def strip_heading(line: str) -> str:
    return line.strip().lstrip(HEADING_MARKER).strip()


def split_lines(text: str) -> List[str]:
    """Split on ``\\n`` only, dropping one trailing ``\\r`` per line.

    Unlike :meth:`str.splitlines`, form feeds, vertical tabs and the Unicode
    line separators stay inside the line they appear in.  A final newline
    does not produce an extra empty line.
    """

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def count_headings(text: str) -> int:
    return sum(1 for line in split_lines(text) if line.startswith(HEADING_MARKER))


def _fence_language(stripped: str) -> str:
    # Surrounding whitespace is dropped, so "``` python" yields "python".
    language = stripped
    while language.startswith(FENCE_MARKER):
        language = language[len(FENCE_MARKER):]
    return language.strip()


def segment(text: str) -> List[Block]:
    """Split ``text`` into an ordered list of :class:`Block` values.

    Fence lines toggle code mode and never contribute content.  Heading lines
    are emitted immediately, even inside an open fence, and do not change the
    current mode.  A blank line closes the current text paragraph.  Whatever
    is still buffered at end of input is flushed as code when a fence was left
    open, otherwise as text.  Blocks whose trimmed content is empty are never
    emitted.
    """

    blocks: List[Block] = []
    in_code_block = False
    code_language = ""
    pending: List[str] = []

    def flush(as_code: bool) -> None:
        content = "\n".join(pending).strip()
        pending.clear()
        if not content:
            return
        if as_code:
            blocks.append(Block.code(code_language, content))
        else:
            blocks.append(Block.text(content))

    for line in split_lines(text):
        stripped = line.strip()
        if stripped.startswith(FENCE_MARKER):
            if in_code_block:
                flush(as_code=True)
                in_code_block = False
                code_language = ""
            else:
                in_code_block = True
                code_language = _fence_language(stripped)
        elif line.startswith(HEADING_MARKER):
            blocks.append(Block.heading(heading_level(line), strip_heading(line)))
        elif in_code_block:
            pending.append(line)
        elif not stripped:
            if pending:
                flush(as_code=False)
        else:
            pending.append(line)

    if pending:
        flush(as_code=in_code_block)
    return blocks


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

class RenderSpan(NamedTuple):
    text: str
    tags: Tuple[str, ...]


# Order matters: the first family containing a token type wins.
_TOKEN_FAMILIES = (
    (Comment, "tok-comment"),
    (String, "tok-string"),
    (Number, "tok-number"),
    (Keyword, "tok-keyword"),
    (Name.Function, "tok-function"),
    (Name.Class, "tok-class"),
    (Name.Builtin, "tok-builtin"),
    (Name.Decorator, "tok-decorator"),
    (Operator, "tok-operator"),
)
TOKEN_TAGS = tuple(tag for _, tag in _TOKEN_FAMILIES) + ("tok-plain",)


class PygmentsHighlighter:
    """Split code into ``(tag, text)`` pairs using a Pygments lexer.

    The lexer is chosen by the block's language tag.  Unknown and empty tags
    fall back to plain text, so highlighting never fails.  Joining the text
    parts always gives back the original code.
    """

    def lexer_for(self, language: str):
        options = {"stripnl": False, "ensurenl": False}
        if language:
            try:
                return get_lexer_by_name(language.lower(), **options)
            except ClassNotFound:
                pass
        return TextLexer(**options)

    def tokens(self, code: str, language: str) -> Iterator[Tuple[str, str]]:
        for token_type, value in self.lexer_for(language).get_tokens(code):
            if value:
                yield self.tag_for(token_type), value

    @staticmethod
    def tag_for(token_type) -> str:
        for family, tag in _TOKEN_FAMILIES:
            if token_type in family:
                return tag
        return "tok-plain"


def heading_tag(level: int) -> str:
    return f"h{max(1, min(level, MAX_STYLED_HEADING_LEVEL))}"


def layout_blocks(
    blocks: Iterable[Block], highlighter: Optional[PygmentsHighlighter] = None
) -> List[RenderSpan]:
    """Translate blocks into tagged text spans for display.

    Every block ends with a newline and consecutive blocks are separated by a
    ``gap`` span.  Code blocks get a ``code-lang`` caption when they carry a
    language tag and, with a highlighter, one span per token.
    """

    spans: List[RenderSpan] = []
    for index, block in enumerate(blocks):
        if index:
            spans.append(RenderSpan("\n", ("gap",)))
        if block.kind is BlockKind.HEADING:
            spans.append(RenderSpan(block.content + "\n", ("heading", heading_tag(block.level))))
        elif block.kind is BlockKind.CODE:
            if block.language:
                spans.append(RenderSpan(block.language + "\n", ("code-lang",)))
            if highlighter is None:
                spans.append(RenderSpan(block.content, ("code",)))
            else:
                for tag, value in highlighter.tokens(block.content, block.language):
                    spans.append(RenderSpan(value, ("code", tag)))
            spans.append(RenderSpan("\n", ("code",)))
        else:
            spans.append(RenderSpan(block.content + "\n", ("text",)))
    return spans


__all__ = [
    "Block",
    "BlockKind",
    "FENCE_MARKER",
    "PygmentsHighlighter",
    "RenderSpan",
    "TOKEN_TAGS",
    "count_headings",
    "heading_level",
    "heading_tag",
    "layout_blocks",
    "segment",
    "split_lines",
    "strip_heading",
]
