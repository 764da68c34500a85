"""
Bind placeholder normalization.

Repository queries use JDBC (``?``), positional JPA (``?1``) and named
(``:email``) placeholders. PostgreSQL's parser only understands ``$n``, so
placeholders are rewritten before parsing and the original tokens are kept
so they can be restored in display text and handed back to callers as
parameter references.

String literals, quoted identifiers, comments and ``::`` casts are left
untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from indexsense.sql.nodes import Parameter

_TOKEN_RE = re.compile(
    r"""
      (?P<string>'(?:[^']|'')*')
    | (?P<ident>"(?:[^"]|"")*")
    | (?P<line_comment>--[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<cast>::)
    | (?P<positional>\?(?P<position>\d+)?)
    | (?P<named>(?<![\w:]):(?P<name>[A-Za-z_]\w*))
    | (?P<dollar>\$\d+)
    """,
    re.VERBOSE | re.DOTALL,
)

_DOLLAR_RE = re.compile(r"\$(\d+)")


@dataclass(frozen=True)
class NormalizedSQL:
    """SQL rewritten to ``$n`` parameters plus the reverse mapping."""

    sql: str
    parameters: dict[int, Parameter] = field(default_factory=dict)

    def parameter(self, number: int) -> Parameter:
        """Look up ``$number``; unknown numbers come from ``$n`` in the input."""
        return self.parameters.get(number) or Parameter(token=f"${number}", index=number)

    def restore(self, text: str) -> str:
        """Replace ``$n`` in rendered SQL with the original tokens."""
        if not self.parameters:
            return text
        return _DOLLAR_RE.sub(lambda m: self.parameter(int(m.group(1))).token, text)


def normalize_placeholders(sql: str) -> NormalizedSQL:
    """
    Rewrite ``?``, ``?N`` and ``:name`` placeholders into ``$n``.

    Numbering: ``?N`` keeps ``N``; a bare ``?`` takes the next number not
    claimed by any ``?N`` or ``$n`` in the statement; each distinct ``:name``
    gets one number, reused on repeat occurrences.
    """
    parameters: dict[int, Parameter] = {}
    named: dict[str, int] = {}
    reserved = {
        int(m.group("position") or m.group("dollar")[1:])
        for m in _TOKEN_RE.finditer(sql)
        if m.group("position") or m.group("dollar")
    }
    counter = 0

    def next_number() -> int:
        nonlocal counter
        counter += 1
        while counter in parameters or counter in reserved:
            counter += 1
        return counter

    def replace(match: re.Match[str]) -> str:
        if match.group("positional"):
            position = match.group("position")
            if position:
                number = int(position)
                parameters[number] = Parameter(token=match.group(0), index=number)
            else:
                number = next_number()
                parameters[number] = Parameter(token="?", index=number)
            return f"${number}"
        if match.group("named"):
            name = match.group("name")
            number = named.get(name)
            if number is None:
                number = named[name] = next_number()
                parameters[number] = Parameter(token=f":{name}", index=number, name=name)
            return f"${number}"
        return match.group(0)

    rewritten = _TOKEN_RE.sub(replace, sql)
    return NormalizedSQL(sql=rewritten, parameters=parameters)
