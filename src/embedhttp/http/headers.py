"""
=============================================================================
HTTP HEADERS
=============================================================================

An ordered, case-insensitive multimap of header fields.

=============================================================================
WHY NOT A DICT?
=============================================================================

A plain dict gets three things about HTTP headers wrong:

    1. CASE: "Content-Type" and "content-type" are the same field
       (RFC 7230 §3.2), but a dict treats them as two keys.

    2. REPETITION: a field may legitimately appear more than once:

            Set-Cookie: a=1
            Set-Cookie: b=2

       Folding these into "a=1, b=2" breaks Set-Cookie. They have to stay
       separate lines on the wire.

    3. ORDER: what the handler set is what the client should see, in the
       same order and with the same spelling.

So we keep a list of (name, value) pairs exactly as given, and do lookups
by comparing lowercased names:

    ┌─────────────────────────────────────────────────────────────────────┐
    │   _fields = [                                                        │
    │       ("Content-Type", "text/plain"),                                │
    │       ("Set-Cookie",   "a=1"),          get("set-cookie")   → "a=1"  │
    │       ("Set-Cookie",   "b=2"),          get_all("SET-COOKIE")        │
    │   ]                                          → ["a=1", "b=2"]        │
    └─────────────────────────────────────────────────────────────────────┘

Header counts are small (usually < 30), so linear scans are cheaper than
maintaining a second index.

=============================================================================
"""

import re
from typing import Iterator, List, Optional, Tuple

from ..errors import HeadersFrozenError


# RFC 7230 token: 1*tchar
TOKEN_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

# CR / LF / NUL in a value would let a caller inject extra header lines.
_FORBIDDEN_VALUE_CHARS = re.compile(r"[\r\n\x00]")


class Headers:
    """
    Ordered multimap of HTTP header fields.

    Lookup is case-insensitive; storage keeps the name's original case and
    insertion order. Once ``freeze()`` is called every mutation raises
    HeadersFrozenError until ``clear()`` resets the map for reuse.

    Example:
        headers = Headers()
        headers.add("Set-Cookie", "a=1")
        headers.add("set-cookie", "b=2")
        headers.get_all("SET-COOKIE")   # ["a=1", "b=2"]
        list(headers.items())           # [("Set-Cookie", "a=1"),
                                        #  ("set-cookie", "b=2")]
    """

    __slots__ = ("_fields", "_frozen")

    def __init__(self, fields=None):
        self._fields: List[Tuple[str, str]] = []
        self._frozen = False
        if fields:
            pairs = fields.items() if hasattr(fields, "items") else fields
            for name, value in pairs:
                self.add(name, value)

    # =========================================================================
    # READING
    # =========================================================================

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value for ``name``, or ``default``."""
        key = name.lower()
        for field_name, value in self._fields:
            if field_name.lower() == key:
                return value
        return default

    def get_all(self, name: str) -> List[str]:
        """Return every value for ``name`` in insertion order."""
        key = name.lower()
        return [value for field_name, value in self._fields if field_name.lower() == key]

    def has_token(self, name: str, token: str) -> bool:
        """
        Check whether a comma-separated header contains ``token``.

        Used for list-valued headers where the token may be one of several:

            Connection: keep-alive, Upgrade   → has_token("connection", "upgrade")
            Transfer-Encoding: gzip, chunked  → has_token("transfer-encoding", "chunked")

        Comparison is case-insensitive and spans repeated fields.
        """
        wanted = token.lower()
        for value in self.get_all(name):
            for item in value.split(","):
                if item.strip().lower() == wanted:
                    return True
        return False

    def items(self) -> Iterator[Tuple[str, str]]:
        """Iterate (name, value) pairs in insertion order, case preserved."""
        return iter(list(self._fields))

    def names(self) -> List[str]:
        """Distinct field names, first spelling wins, in order of appearance."""
        seen = set()
        result = []
        for name, _ in self._fields:
            key = name.lower()
            if key not in seen:
                seen.add(key)
                result.append(name)
        return result

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(field_name.lower() == key for field_name, _ in self._fields)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"Headers({self._fields!r})"

    # =========================================================================
    # WRITING
    # =========================================================================

    def add(self, name: str, value) -> None:
        """Append a field, keeping any existing values for the same name."""
        self._check_mutable()
        self._fields.append(_validate(name, value))

    def set(self, name: str, value) -> None:
        """
        Replace every value for ``name`` with a single one.

        The new field takes the position of the first existing one, so
        overriding a header doesn't reshuffle the serialized order.
        """
        self._check_mutable()
        field = _validate(name, value)
        key = name.lower()
        replaced = False
        fields = []
        for existing in self._fields:
            if existing[0].lower() != key:
                fields.append(existing)
            elif not replaced:
                fields.append(field)
                replaced = True
        if not replaced:
            fields.append(field)
        self._fields = fields

    def setdefault(self, name: str, value) -> str:
        """Set ``name`` only if absent; return the effective first value."""
        current = self.get(name)
        if current is None:
            self.add(name, value)
            return str(value)
        return current

    def remove(self, name: str) -> int:
        """Delete every field called ``name``. Returns how many were removed."""
        self._check_mutable()
        key = name.lower()
        before = len(self._fields)
        self._fields = [f for f in self._fields if f[0].lower() != key]
        return before - len(self._fields)

    def update(self, fields) -> None:
        """Add every pair from a mapping or iterable of pairs."""
        pairs = fields.items() if hasattr(fields, "items") else fields
        for name, value in pairs:
            self.add(name, value)

    def freeze(self) -> None:
        """Make the map read-only (the response head has been sent)."""
        self._frozen = True

    def clear(self) -> None:
        """Remove every field and unfreeze, ready for the next exchange."""
        self._fields = []
        self._frozen = False

    def copy(self) -> "Headers":
        """Return an unfrozen copy."""
        clone = Headers()
        clone._fields = list(self._fields)
        return clone

    def _check_mutable(self) -> None:
        if self._frozen:
            raise HeadersFrozenError("Headers can't be modified after the head was sent")


def _validate(name: str, value) -> Tuple[str, str]:
    if not isinstance(name, str) or not TOKEN_PATTERN.match(name):
        raise ValueError(f"Invalid header name: {name!r}")
    value = str(value)
    if _FORBIDDEN_VALUE_CHARS.search(value):
        raise ValueError(f"Invalid characters in value of header {name!r}")
    return name, value.strip()
