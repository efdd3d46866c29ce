"""Helpers for the patient disciplines field.

Disciplines are kept as a JSON array string (e.g. '["Physio","OT"]') so the
column stays a plain text column in every supported database.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Sequence

DISCIPLINE_DELIMITERS = re.compile(r"[/,;]+")


def _dumps(values: Sequence[Any]) -> str:
    return json.dumps(list(values), ensure_ascii=False, separators=(",", ":"))


def parse_disciplines(value: Any) -> List[str]:
    """Split delimited discipline text into an ordered list.

    Splits on any run of '/', ',' or ';', trims each piece and drops empty
    pieces. Order of appearance is preserved.

    Parameters
    ----------
    value : Any
        Raw text such as "Physio / OT; SLP". None or empty gives [].

    Returns
    -------
    List[str]
        Discipline names in source order.

    Examples
    --------
    >>> parse_disciplines("Physio/OT")
    ['Physio', 'OT']
    >>> parse_disciplines(" Physio ,, OT ;")
    ['Physio', 'OT']
    """
    if value is None:
        return []
    text = str(value)
    if not text:
        return []
    pieces = (piece.strip() for piece in DISCIPLINE_DELIMITERS.split(text))
    return [piece for piece in pieces if piece]


def disciplines_to_string(disciplines: Sequence[str] | str) -> str:
    """Serialize disciplines to the stored JSON-array string.

    A string that already holds valid JSON is returned unchanged; any other
    string is treated as a single discipline.
    """
    if isinstance(disciplines, str):
        try:
            json.loads(disciplines)
        except ValueError:
            return _dumps([disciplines])
        return disciplines
    return _dumps(disciplines)


def disciplines_to_array(disciplines: Sequence[str] | str | None) -> List[str]:
    """Decode the stored disciplines value into a list.

    Lists pass through. Empty values give []. A JSON scalar is wrapped in a
    list, and text that is not JSON at all is treated as one discipline.
    """
    if isinstance(disciplines, (list, tuple)):
        return list(disciplines)

    if not disciplines:
        return []

    try:
        parsed = json.loads(disciplines)
    except ValueError:
        return [disciplines]
    return parsed if isinstance(parsed, list) else [parsed]
