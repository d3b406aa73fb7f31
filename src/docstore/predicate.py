"""
Immutable SQL fragments with positional bind parameters.

A :class:`Predicate` carries a piece of SQL text, the ordered list of values
bound to its placeholders and a little metadata about the key it was resolved
from. Placeholders are PostgreSQL style (``$1``, ``$2``, ...) and are always
numbered contiguously from 1 inside a single predicate. Combining predicates
renumbers every operand so the combined text is numbered contiguously as well.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .errors import InvalidPredicate

# a bare ``$`` or a numbered ``$7``, but never ``$name``
PLACEHOLDER = re.compile(r"\$(\d*)(?!\w)")
# quoted literals come first so a ``$`` inside them is skipped
TOKEN = re.compile(r"'(?:[^']|'')*'|" + PLACEHOLDER.pattern)

OPERATORS = ("AND", "OR")


def count_placeholders(text: str) -> int:
    """Return the number of positional placeholders in ``text``."""
    return sum(match.group(1) is not None for match in TOKEN.finditer(text))


def renumber(text: str, offset: int = 0) -> str:
    """
    Number every placeholder in ``text`` left to right starting at ``offset + 1``.

    Parameters
    ----------
    text : str
        SQL text containing bare (``$``) or numbered (``$n``) placeholders.
    offset : int, optional
        Number of parameters that precede this fragment in the final statement.

    Returns
    -------
    str
        Text with placeholders ``$offset+1 .. $offset+k``.
    """
    counter = iter(range(offset + 1, offset + count_placeholders(text) + 1))
    return TOKEN.sub(lambda m: m.group(0) if m.group(1) is None else f"${next(counter)}", text)


@dataclass(frozen=True)
class Predicate:
    """
    An SQL fragment and the values bound to its placeholders.

    Parameters
    ----------
    text : str
        SQL text. Bare ``$`` placeholders are numbered on construction.
    params : iterable, optional
        Values for the placeholders, in order of appearance.
    meta : mapping, optional
        Resolution metadata, e.g. ``{"data_container": "content", "key": "name"}``.

    Raises
    ------
    InvalidPredicate
        If the number of placeholders differs from the number of params.

    Examples
    --------
    >>> Predicate("type = $", ["Person"]).text
    'type = $1'
    """

    text: str = ""
    params: tuple = ()
    meta: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        params = tuple(self.params)
        if count_placeholders(self.text) != len(params):
            raise InvalidPredicate(
                f"Predicate {self.text!r} has {count_placeholders(self.text)} placeholders but {len(params)} params"
            )
        object.__setattr__(self, "text", renumber(self.text))
        object.__setattr__(self, "params", params)
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta or {})))

    def __bool__(self) -> bool:
        return bool(self.text)

    def __str__(self) -> str:
        return self.text

    def get_meta(self, name: str, default: Any = None) -> Any:
        return self.meta.get(name, default)

    def shifted(self, offset: int) -> str:
        """Return the text renumbered as if ``offset`` params preceded it."""
        return renumber(self.text, offset)

    def map_text(self, function) -> "Predicate":
        """Return a new predicate whose text is ``function(text)`` with the same params and meta."""
        return Predicate(function(self.text), self.params, self.meta)

    @classmethod
    def concat(cls, parts: Iterable["Predicate | str"], separator: str = " ") -> "Predicate":
        """
        Concatenate fragments with ``separator``, renumbering placeholders.

        Strings are taken as parameterless fragments; empty fragments are skipped.
        """
        texts = []
        params: list = []
        for part in parts:
            if isinstance(part, str):
                part = Predicate(part)
            if not part:
                continue
            texts.append(part.shifted(len(params)))
            params.extend(part.params)
        return cls(separator.join(texts), params)

    @classmethod
    def join(cls, predicates: Iterable["Predicate | None"], operator: str = "AND") -> "Predicate":
        """
        Combine predicates with a boolean operator.

        Empty operands are dropped. A single remaining operand is returned as is;
        two or more are each wrapped in parentheses. ``join([])`` returns the empty
        predicate, which evaluates as false and stands for "no condition".

        Parameters
        ----------
        predicates : iterable of Predicate
            Operands to combine.
        operator : str, optional
            ``"AND"`` (default) or ``"OR"``.

        Returns
        -------
        Predicate
            The combined predicate.
        """
        operator = operator.upper()
        if operator not in OPERATORS:
            raise InvalidPredicate(f"Unknown boolean operator {operator!r}")
        operands = [p for p in predicates if p]
        if not operands:
            return cls()
        if len(operands) == 1:
            return operands[0]
        return cls.concat([p.map_text(lambda text: f"({text})") for p in operands], f" {operator} ")
