"""Search strings for the bookmark list.

A search string is either free text, matched against every field of a
record, or a sequence of ``field:pattern`` qualifiers such as
``tag:python title:tutorial``. Free text written before the first
qualifier becomes a ``title`` filter, so ``django tag:python`` keeps
records tagged "python" whose title mentions "django".
"""

from __future__ import annotations

from dataclasses import fields
from typing import Dict, Iterable, List, Optional

from .log import get_logger
from .model import BookmarkRecord, QueryExpression

log = get_logger(__name__)

ORDERS = ("title", "date", "url")
_RECORD_FIELDS = {f.name for f in fields(BookmarkRecord)}


def parse_query(search: str) -> QueryExpression:
    """Turn a raw search string into a match expression.

    Returns the string unchanged when it holds no ``field:`` qualifier,
    otherwise a ``{field: pattern}`` dict. Never raises.
    """
    if not search:
        return ""

    expression: Dict[str, str] = {}
    pattern = ""
    field: Optional[str] = None
    has_expressions = False

    # Right to left: a field name sits just before its pattern, so it can be
    # collected once the ":" is seen without knowing where it starts.
    for ch in reversed(search):
        if ch == ":":
            field = ""
            continue
        if field is not None:
            if ch == " ":
                expression[field] = pattern
                has_expressions = True
                field = None
                pattern = ""
            else:
                field = ch + field
            continue
        pattern = ch + pattern

    if field is not None:
        expression[field] = pattern
        return expression
    if has_expressions:
        expression["title"] = pattern
        return expression
    return pattern


def tag_query(tag: str) -> str:
    return f"tag:{tag}"


def matches(record: BookmarkRecord, expression: QueryExpression) -> bool:
    if isinstance(expression, str):
        if not expression:
            return True
        return any(_contains(v, expression) for v in _all_values(record))
    for field, pattern in expression.items():
        values = _field_values(record, field)
        if not any(_contains(v, pattern) for v in values):
            return False
    return True


def filter_records(records: Iterable[BookmarkRecord], expression: QueryExpression) -> List[BookmarkRecord]:
    return [r for r in records if matches(r, expression)]


def order_records(records: Iterable[BookmarkRecord], order: str = "title") -> List[BookmarkRecord]:
    """Sort records for display.

    ``date`` puts the newest bookmarks first; ``title`` and ``url`` sort
    alphabetically ignoring case. The sort is stable, so records that
    compare equal keep their tree order.
    """
    if order not in ORDERS:
        raise ValueError(f"unknown order {order!r}; expected one of {', '.join(ORDERS)}")
    if order == "date":
        return sorted(records, key=lambda r: r.date or 0, reverse=True)
    return sorted(records, key=lambda r: (getattr(r, order) or "").casefold())


def search(records: Iterable[BookmarkRecord], text: str, order: str = "title") -> List[BookmarkRecord]:
    expression = parse_query(text)
    log.debug("Search %r parsed as %r", text, expression)
    return order_records(filter_records(records, expression), order)


def _field_values(record: BookmarkRecord, field: str) -> List[str]:
    if field == "tag":
        return [t.text for t in record.tag]
    if field not in _RECORD_FIELDS:
        return []
    value = getattr(record, field)
    return [] if value is None else [str(value)]


def _all_values(record: BookmarkRecord) -> List[str]:
    out = [record.id, record.title, record.url]
    if record.date is not None:
        out.append(str(record.date))
    out.extend(t.text for t in record.tag)
    return [v for v in out if v is not None]


def _contains(value: str, pattern: str) -> bool:
    return pattern.casefold() in (value or "").casefold()
