"""
Search-filter helpers.

Queries are plain dicts mapping a field name to a condition:
  • a compiled pattern  → ``pattern.search(str(value))`` (lists match if any item does)
  • a callable          → ``cond(value)`` must be truthy
  • anything else       → equality
An optional ``any_of`` list of ``(field, condition)`` pairs adds an OR group.
"""
import math
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

Condition = Any
Query = Dict[str, Condition]
OrGroup = List[Tuple[str, Condition]]


def create_flexible_search_pattern(text: str) -> str:
    """Pattern matching *text* with any amount of inner whitespace, or none at all.

    "Color Correction" matches "Color   Correction" and "ColorCorrection".
    A letter directly in front of the match is not allowed.
    """
    words = [re.escape(w) for w in text.split()]
    flexible_spaces = r'\s*'.join(words)
    compact = ''.join(words)
    return f'(?<![A-Za-z])({compact}|{flexible_spaces})'


def create_regex_query(
    value: Optional[str],
    exact: bool = False,
    flexible: bool = True,
    case_insensitive: bool = True,
) -> Optional[re.Pattern]:
    """Compile a search pattern for *value*, or None when it is empty."""
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if exact:
        pattern = rf'^\s*{re.escape(text)}\s*$'
    elif flexible:
        pattern = create_flexible_search_pattern(text)
    else:
        pattern = re.escape(text)
    return re.compile(pattern, re.IGNORECASE if case_insensitive else 0)


def add_if_defined(query: Query, key: str, value: Any) -> None:
    """Set ``query[key]`` unless value is None, '' or False."""
    if value is not None and value != '' and value is not False:
        query[key] = value


def build_or_regex(term: Optional[str], fields: Iterable[str], **opts) -> OrGroup:
    """OR group matching *term* in any of *fields* (empty when term is blank)."""
    pattern = create_regex_query(term, **opts)
    if pattern is None:
        return []
    return [(f, pattern) for f in fields]


def plus_separated_contains_all(value: Optional[str]) -> Optional[re.Pattern]:
    """Pattern requiring every ``+``-separated token of *value* as a token of the field.

    "Clipping Path+Retouch" matches "Retouch + Clipping Path + Masking".
    """
    if not value or not value.strip():
        return None
    tokens = [t.strip() for t in value.split('+') if t.strip()]
    if not tokens:
        return None
    lookaheads = []
    for token in tokens:
        escaped = r'\s*'.join(re.escape(w) for w in token.split())
        lookaheads.append(rf'(?=.*(?:^|\s*\+\s*){escaped}(?:\s*\+\s*|$))')
    return re.compile('^' + ''.join(lookaheads) + '.*$', re.IGNORECASE)


def _match_value(value: Any, condition: Condition) -> bool:
    if isinstance(condition, re.Pattern):
        if value is None:
            return False
        if isinstance(value, list):
            return any(condition.search(str(v)) for v in value)
        return condition.search(str(value)) is not None
    if callable(condition):
        return bool(condition(value))
    return value == condition


def matches_query(document: Dict[str, Any], query: Query, any_of: Optional[OrGroup] = None) -> bool:
    """Return True if *document* satisfies every condition of *query* and one of *any_of*."""
    for field, condition in query.items():
        if not _match_value(document.get(field), condition):
            return False
    if any_of and not any(_match_value(document.get(f), c) for f, c in any_of):
        return False
    return True


def filter_documents(
    documents: Iterable[Dict[str, Any]],
    query: Query,
    any_of: Optional[OrGroup] = None,
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
) -> List[Dict[str, Any]]:
    return [
        d for d in documents
        if matches_query(d, query, any_of) and (predicate is None or predicate(d))
    ]


def paginate(items: List[Any], page: int, items_per_page: int) -> Dict[str, Any]:
    """Slice *items* into ``{pagination: {count, pageCount}, items}``."""
    count = len(items)
    skip = (page - 1) * items_per_page
    return {
        'pagination': {
            'count': count,
            'pageCount': math.ceil(count / items_per_page) if items_per_page else 0,
        },
        'items': items[skip:skip + items_per_page],
    }
