"""Locating and slicing object literals out of minified JavaScript.

Nothing here parses JavaScript. Literals are found by searching for stable
string signatures and cut out by balancing delimiters, skipping over string
literals so that braces inside strings don't count.
"""

import dataclasses
import re

from mg_api.errors import MatchError

_CLOSERS = {"{": "}", "(": ")"}
_QUOTES = ("'", '"', "`")
_IDENT_CHAR = re.compile(r"[A-Za-z0-9_$]")


@dataclasses.dataclass(frozen=True)
class ObjectLiteralHit:
    variable_name: str | None
    source: str
    anchor_offset: int
    start: int


def extract_balanced(text: str, start: int) -> str:
    """Return the balanced block opening at text[start].

    Args:
        text: Source text
        start: Offset of an opening "{" or "("

    Returns:
        The substring from the opener to its matching closer, inclusive

    Raises:
        MatchError: If text[start] is not an opener or the block never closes
    """
    if start < 0 or start >= len(text) or text[start] not in _CLOSERS:
        raise MatchError(f"No opening delimiter at offset {start}")

    opener = text[start]
    closer = _CLOSERS[opener]
    depth = 0
    in_str = None
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == in_str:
                in_str = None
            continue

        if ch in _QUOTES:
            in_str = ch
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    raise MatchError(
        f"Unbalanced {opener!r} starting at offset {start} (reached end of text)"
    )


def extract_balanced_braces(text: str, start: int) -> str:
    if text[start : start + 1] != "{":
        raise MatchError(f"Expected '{{' at offset {start}")
    return extract_balanced(text, start)


def extract_balanced_parens(text: str, start: int) -> str:
    if text[start : start + 1] != "(":
        raise MatchError(f"Expected '(' at offset {start}")
    return extract_balanced(text, start)


def variable_name_before(text: str, eq_offset: int) -> str | None:
    """Best-effort name of the variable assigned at text[eq_offset] == "="."""
    j = eq_offset - 1
    while j >= 0 and (text[j].isspace() or text[j] == ";"):
        j -= 1
    end = j + 1
    while j >= 0 and _IDENT_CHAR.match(text[j]):
        j -= 1
    return text[j + 1 : end] or None


def locate_literal(
    text: str, signatures: list[str] | tuple[str, ...], window_size: int = 120_000
) -> ObjectLiteralHit | None:
    """Find the object literal identified by a set of signatures.

    The first signature is the anchor. An anchor occurrence qualifies when every
    other signature appears within window_size characters on either side of it.
    The literal is the one opened by the nearest "={" at or before the anchor.

    Args:
        text: Bundle source
        signatures: Anchor followed by confirmation strings
        window_size: Half-width of the confirmation window

    Returns:
        The hit, or None when no anchor occurrence qualifies

    Raises:
        MatchError: If the located literal cannot be balanced
    """
    if not signatures:
        raise ValueError("At least one signature is required")

    anchor, *confirmations = signatures
    pos = 0
    while True:
        idx = text.find(anchor, pos)
        if idx == -1:
            return None

        window = text[max(0, idx - window_size) : idx + window_size]
        if not all(sig in window for sig in confirmations):
            pos = idx + 1
            continue

        eq = text.rfind("={", 0, idx + 2)
        if eq == -1:
            pos = idx + 1
            continue

        source = extract_balanced(text, eq + 1)
        return ObjectLiteralHit(
            variable_name=variable_name_before(text, eq),
            source=source,
            anchor_offset=idx,
            start=eq + 1,
        )
