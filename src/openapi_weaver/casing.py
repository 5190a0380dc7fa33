"""Rename-all conventions applied to field and variant names."""

import re

CONVENTIONS = (
    "lowercase",
    "UPPERCASE",
    "PascalCase",
    "camelCase",
    "snake_case",
    "SCREAMING_SNAKE_CASE",
    "kebab-case",
    "SCREAMING-KEBAB-CASE",
)


def _capitalize(part: str) -> str:
    return part[:1].upper() + part[1:]


def _snake(text: str) -> str:
    out = []
    for i, ch in enumerate(text):
        if ch.isupper() and i > 0 and text[i - 1] != "_":
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def apply_casing(text: str, convention: str) -> str:
    """Rewrite an identifier according to a rename-all convention.

    Unknown conventions leave the identifier untouched.
    """
    if convention == "lowercase":
        return text.lower()
    if convention == "UPPERCASE":
        return text.upper()
    if convention == "PascalCase":
        if "_" in text:
            return "".join(_capitalize(p) for p in text.split("_"))
        return _capitalize(text)
    if convention == "camelCase":
        if "_" in text:
            parts = text.split("_")
            return parts[0].lower() + "".join(_capitalize(p) for p in parts[1:])
        return text[:1].lower() + text[1:]
    if convention == "snake_case":
        return _snake(text)
    if convention == "SCREAMING_SNAKE_CASE":
        return _snake(text).upper()
    if convention == "kebab-case":
        return _snake(text).replace("_", "-")
    if convention == "SCREAMING-KEBAB-CASE":
        return _snake(text).replace("_", "-").upper()
    return text


def is_convention(name: str) -> bool:
    return name in CONVENTIONS


def strip_quotes(text: str) -> str:
    return re.sub(r'^["\'](.*)["\']$', r"\1", text.strip())
