"""Resumption cursor for Aggregate's submission list.

Aggregate hands back an XML fragment with every page of instance ids. The
fragment is opaque to us except for two fields: the last update date of the
page and the uri of its last item. Cursors are ordered by that date so the
newest one seen during a pull can be stored as the next starting point.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

from . import xml_utils
from .exceptions import MalformedCursorError

# Only used to compare cursors that have no last update date
SOME_OLD_DATE = datetime(2010, 1, 1, tzinfo=timezone.utc)

CURSOR_NAMESPACE = "http://www.opendatakit.org/cursor"

_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_datetime(value: str) -> datetime:
    """Parse the ISO-8601 flavours Aggregate emits (Z, +0000, +00:00)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _OFFSET_RE.sub(r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _envelope(last_update: Optional[datetime], last_returned_value: Optional[str]) -> str:
    attribute_value = (
        f"<attributeValue>{last_update.isoformat()}</attributeValue>"
        if last_update is not None else "<attributeValue/>"
    )
    uri_last_returned = (
        f"<uriLastReturnedValue>{escape(last_returned_value)}</uriLastReturnedValue>"
        if last_returned_value is not None else "<uriLastReturnedValue/>"
    )
    return (
        f'<cursor xmlns="{CURSOR_NAMESPACE}">'
        "<attributeName>_LAST_UPDATE_DATE</attributeName>"
        f"{attribute_value}"
        f"{uri_last_returned}"
        "<isForwardCursor>true</isForwardCursor>"
        "</cursor>"
    )


class Cursor:
    __slots__ = ("_value", "_last_update", "_last_returned_value")

    def __init__(self, value: str, last_update: Optional[datetime],
                 last_returned_value: Optional[str]):
        object.__setattr__(self, "_value", value)
        object.__setattr__(self, "_last_update", last_update)
        object.__setattr__(self, "_last_returned_value", last_returned_value)

    def __setattr__(self, name, value):
        raise AttributeError("Cursor is immutable")

    @classmethod
    def empty(cls) -> "Cursor":
        return cls("", None, None)

    @classmethod
    def from_xml(cls, cursor_xml: Optional[str]) -> "Cursor":
        """Parse a cursor fragment, keeping the fragment verbatim as its value."""
        if cursor_xml is None or not cursor_xml.strip():
            return cls.empty()
        try:
            root = xml_utils.parse(cursor_xml)
        except ET.ParseError as e:
            raise MalformedCursorError(f"Can't parse cursor: {e}") from e

        raw_date = xml_utils.child_value(root, "attributeValue")
        try:
            last_update = parse_datetime(raw_date) if raw_date else None
        except ValueError as e:
            raise MalformedCursorError(f"Can't parse cursor date {raw_date!r}") from e
        last_returned_value = xml_utils.child_value(root, "uriLastReturnedValue")
        return cls(cursor_xml, last_update, last_returned_value)

    @classmethod
    def of(cls, last_update: Optional[datetime] = None,
           last_returned_value: Optional[str] = None) -> "Cursor":
        return cls(_envelope(last_update, last_returned_value), last_update, last_returned_value)

    @classmethod
    def of_date(cls, start_date: date, last_returned_value: Optional[str] = None) -> "Cursor":
        """Cursor pointing at the start of `start_date` in UTC."""
        last_update = datetime(start_date.year, start_date.month, start_date.day, tzinfo=timezone.utc)
        return cls.of(last_update, last_returned_value)

    def get(self) -> str:
        return self._value

    @property
    def last_update(self) -> Optional[datetime]:
        return self._last_update

    @property
    def last_returned_value(self) -> Optional[str]:
        return self._last_returned_value

    def is_empty(self) -> bool:
        return self._last_update is None and self._last_returned_value is None

    def _sort_key(self) -> datetime:
        return self._last_update if self._last_update is not None else SOME_OLD_DATE

    def compare_to(self, other: "Cursor") -> int:
        a, b = self._sort_key(), other._sort_key()
        return (a > b) - (a < b)

    def __lt__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __le__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._sort_key() <= other._sort_key()

    def __gt__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._sort_key() > other._sort_key()

    def __ge__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._sort_key() >= other._sort_key()

    def __eq__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return (self._last_update == other._last_update
                and self._last_returned_value == other._last_returned_value)

    def __hash__(self):
        return hash((self._last_update, self._last_returned_value))

    def __repr__(self):
        return f"Cursor(last_update={self._last_update!r}, last_returned_value={self._last_returned_value!r})"


def _pref_key(form_id: str) -> str:
    return f"{form_id}_last_cursor"


def read_last_cursor(prefs, form_id: str) -> Optional[Cursor]:
    """Last cursor stored for `form_id` in a get/put preferences store, if any."""
    value = prefs.get(_pref_key(form_id))
    if value is None:
        return None
    return Cursor.from_xml(value)


def store_last_cursor(prefs, form_id: str, cursor: Cursor):
    prefs.put(_pref_key(form_id), cursor.get())
