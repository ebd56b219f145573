"""Rewrite many single-row INSERTs sharing one template into one multi-row INSERT."""

from dataclasses import dataclass
from typing import Any, List, Sequence

from ..core.exceptions import BatchParseError
from ..core.models import WriteRequest

VALUES_KEYWORD = "VALUES"


def _find_keyword(text: str, keyword: str, start: int = 0) -> int:
    """Index of ``keyword`` as a standalone word, case-insensitive, or -1."""
    upper = text.upper()
    index = upper.find(keyword, start)
    while index != -1:
        before = upper[index - 1] if index > 0 else " "
        end = index + len(keyword)
        after = upper[end] if end < len(upper) else " "
        if not (before.isalnum() or before == "_") and not (after.isalnum() or after == "_"):
            return index
        index = upper.find(keyword, index + 1)
    return -1


@dataclass(frozen=True)
class StatementTemplate:
    """
    A single-row INSERT split around its one ``VALUES (...)`` group.

    ``head`` runs up to and including ``VALUES``; ``tail`` is whatever follows
    the group (an ``ON CONFLICT`` clause, for instance).
    """

    head: str
    tail: str
    column_count: int

    @classmethod
    def parse(cls, text: str) -> "StatementTemplate":
        """
        Parse a template such as ``INSERT INTO t (a, b) VALUES ($1, $2) ON CONFLICT ...``.

        Raises:
            BatchParseError: If there is not exactly one VALUES group, or its
                placeholders are not ``$1..$C`` in order
        """
        keyword_at = _find_keyword(text, VALUES_KEYWORD)
        if keyword_at == -1:
            raise BatchParseError("Statement has no VALUES clause")
        head_end = keyword_at + len(VALUES_KEYWORD)

        open_at = head_end
        while open_at < len(text) and text[open_at].isspace():
            open_at += 1
        if open_at >= len(text) or text[open_at] != "(":
            raise BatchParseError("VALUES is not followed by a parenthesized group")

        close_at = text.find(")", open_at)
        if close_at == -1:
            raise BatchParseError("Unterminated VALUES group")
        if _find_keyword(text, VALUES_KEYWORD, close_at) != -1:
            raise BatchParseError("Statement has more than one VALUES clause")

        placeholders = [part.strip() for part in text[open_at + 1 : close_at].split(",")]
        expected = [f"${i}" for i in range(1, len(placeholders) + 1)]
        if placeholders != expected:
            raise BatchParseError(
                f"VALUES group must hold $1..${len(expected)} in order, got {', '.join(placeholders)}"
            )

        return cls(
            head=text[:head_end],
            tail=text[close_at + 1 :],
            column_count=len(placeholders),
        )

    def render(self, row_count: int, style: str = "numeric") -> str:
        """
        Render the statement with ``row_count`` value groups.

        ``numeric`` numbers placeholders ``$1..$R*C`` (row r, column c gets
        ``r*C + c + 1``); ``pyformat`` emits the same positions as ``%s`` for
        psycopg, with literal ``%`` escaped.
        """
        if row_count < 1:
            raise ValueError("row_count must be at least 1")

        columns = self.column_count
        groups = []
        for row in range(row_count):
            if style == "numeric":
                cells = [f"${row * columns + column + 1}" for column in range(columns)]
            else:
                cells = ["%s"] * columns
            groups.append("(" + ", ".join(cells) + ")")

        head, tail = self.head, self.tail
        if style != "numeric":
            head, tail = head.replace("%", "%%"), tail.replace("%", "%%")
        return f"{head} {', '.join(groups)}{tail}"


@dataclass(frozen=True)
class ComposedStatement:
    """One multi-row statement and its flattened values."""

    template: StatementTemplate
    row_count: int
    values: List[Any]

    @property
    def text(self) -> str:
        return self.template.render(self.row_count)

    @property
    def psycopg_text(self) -> str:
        return self.template.render(self.row_count, style="pyformat")


def compose_batch(requests: Sequence[WriteRequest]) -> ComposedStatement:
    """
    Compose R single-row requests into one R-row statement.

    The template is taken from the first request; every request must carry
    exactly that many values. Values are flattened in request order, so
    position ``r*C + c`` holds request r's c-th value.

    Raises:
        BatchParseError: On an empty batch, a bad template, or a value count mismatch
    """
    if not requests:
        raise BatchParseError("Cannot compose an empty batch")

    template = StatementTemplate.parse(requests[0].text)
    values: List[Any] = []
    for index, request in enumerate(requests):
        if len(request.values) != template.column_count:
            raise BatchParseError(
                f"Request {index} has {len(request.values)} values, template expects {template.column_count}"
            )
        values.extend(request.values)

    return ComposedStatement(template=template, row_count=len(requests), values=values)
