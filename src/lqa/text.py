from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Optional

from .schemas.job import Normalized

_TAG_NAME_RE = re.compile(r"</?([a-zA-Z]+)")
_TAG_FULL_RE = re.compile(r"</?([a-zA-Z]+)[^>]*>")


def _tag(item: dict, pattern: re.Pattern, fallback: Optional[str]) -> Optional[str]:
    match = pattern.search(item.get("v") or "")
    if match:
        name = match.group(1)
        return f"<{name}>" if item.get("t") == "bx" else f"</{name}>"
    if fallback is None:
        return None
    return f"<{fallback}>" if item.get("t") == "bx" else f"</{fallback}>"


def normalized_to_string(items: Optional[Normalized]) -> str:
    """
    Plain rendering: variables show their sample value, tags a bare <name>.
    """
    if not items:
        return ""
    out: List[str] = []
    for item in items:
        if isinstance(item, str):
            out.append(item)
        elif item.get("t") == "x" and item.get("s"):
            out.append(item["s"])
        elif item.get("t") in ("bx", "ex"):
            out.append(_tag(item, _TAG_NAME_RE, "tag"))
        else:
            out.append(item.get("v", ""))
    return "".join(out)


def _display(items: Optional[Normalized], bracket_unknown: bool) -> str:
    if not items:
        return ""
    out: List[str] = []
    for item in items:
        if isinstance(item, str):
            out.append(item)
            continue
        if item.get("t") == "x":
            out.append("{" + (item.get("s") or item.get("v", "")) + "}")
            continue
        if item.get("t") in ("bx", "ex"):
            tag = _tag(item, _TAG_FULL_RE, None)
            if tag:
                out.append(tag)
                continue
        value = item.get("v", "")
        out.append(f"[{value}]" if bracket_unknown else value)
    return "".join(out)


def normalized_to_display_string(items: Optional[Normalized]) -> str:
    return _display(items, bracket_unknown=True)


def normalized_to_display_string_for_target(items: Optional[Normalized]) -> str:
    return _display(items, bracket_unknown=False)


def extract_editable_text(items: Optional[Normalized]) -> List[str]:
    return [item for item in (items or []) if isinstance(item, str)]


def count_words(items: Optional[Normalized]) -> int:
    """
    Count whitespace-separated words in the text parts; placeholders do not count.
    """
    text = " ".join(extract_editable_text(items)).strip()
    if not text:
        return 0
    return len(text.split())


def normalized_to_comparable(items: Iterable[Any]) -> str:
    parts: List[str] = []
    for item in items:
        if isinstance(item, str):
            parts.append(item)
        else:
            parts.append(f"<<PH:{json.dumps(item, sort_keys=True)}>>")
    return "".join(parts)


def normalized_arrays_equal(a: Optional[Normalized], b: Optional[Normalized]) -> bool:
    """
    Equality that tolerates text split differently across items,
    e.g. ["Line1\\n", "Line2"] == ["Line1\\nLine2"].
    """
    a = a or []
    b = b or []
    if a == b:
        return True
    return normalized_to_comparable(a) == normalized_to_comparable(b)
