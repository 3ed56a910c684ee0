from __future__ import annotations

import re
from typing import Iterable


TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(value: str) -> list[str]:
    """Lower-case alphanumeric runs: 'Django_Project' -> ['django', 'project']."""
    return TOKEN_RE.findall(value.lower()) if value else []


def compact(value: str) -> str:
    """Separator-free form: 'django_project' -> 'djangoproject'."""
    return "".join(tokenize(value))


def term_set(value: str) -> frozenset[str]:
    """Tokens of value plus its compact form."""
    tokens = tokenize(value)
    if not tokens:
        return frozenset()
    return frozenset([*tokens, "".join(tokens)])


def terms_of(values: Iterable[str]) -> frozenset[str]:
    result: set[str] = set()
    for v in values:
        result |= term_set(v)
    return frozenset(result)
