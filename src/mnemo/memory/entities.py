"""Pull cross-referenceable entities (files, symbols, packages, URLs) out of text."""

from __future__ import annotations

import re

FILE_PATH_RE = re.compile(
    r"(?:[\w\-.]+[/\\])*[\w\-.]+\."
    r"(?:tsx|ts|jsx|js|json|md|scss|css|html|py|go|rs|java|cpp|c|h)\b",
    re.IGNORECASE,
)
# PascalCase words and camelCase identifiers
CODE_NAME_RE = re.compile(r"\b[A-Z][a-zA-Z0-9]*\b|\b[a-z]+(?:[A-Z][a-zA-Z0-9]*)+\b")
PACKAGE_RE = re.compile(r"@?[\w-]+/[\w-]+|\b[a-zA-Z][\w]*-[\w-]+\b")
URL_RE = re.compile(r"https?://\S+")


def extract_entities(text: str) -> list[str]:
    """Unique entities: URLs, then file paths, code names and package names."""
    found: list[str] = []
    found.extend(URL_RE.findall(text))
    without_urls = URL_RE.sub(" ", text)
    found.extend(FILE_PATH_RE.findall(without_urls))
    found.extend(name for name in CODE_NAME_RE.findall(without_urls) if len(name) > 3)
    found.extend(PACKAGE_RE.findall(without_urls))
    return list(dict.fromkeys(found))
