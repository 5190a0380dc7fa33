"""Tokenizer for directive lines.

Splits on whitespace, except inside double quotes and inside balanced
``<>``, ``[]`` and ``()`` groups, so ``Map<String, User>`` and
``example="two words"`` each stay a single token.
"""

from pydantic import BaseModel

from openapi_weaver.errors import InvalidDirectiveSyntaxError

OPENERS = {"<": ">", "[": "]", "(": ")"}
CLOSERS = {v: k for k, v in OPENERS.items()}


class Token(BaseModel):
    text: str
    quoted: bool = False  # the whole token is one "..." string

    @property
    def value(self) -> str:
        """Token text with surrounding quotes removed."""
        return self.text[1:-1] if self.quoted else self.text


def tokenize(line: str) -> list[Token]:
    tokens: list[Token] = []
    current: list[str] = []
    stack: list[str] = []
    in_quote = False

    def flush():
        if current:
            text = "".join(current)
            quoted = len(text) >= 2 and text[0] == '"' and text[-1] == '"' and text.count('"') == 2
            tokens.append(Token(text=text, quoted=quoted))
            current.clear()

    for ch in line:
        if in_quote:
            current.append(ch)
            if ch == '"':
                in_quote = False
            continue
        if ch == '"':
            in_quote = True
            current.append(ch)
        elif ch in OPENERS:
            stack.append(ch)
            current.append(ch)
        elif ch in CLOSERS:
            if not stack or stack[-1] != CLOSERS[ch]:
                raise InvalidDirectiveSyntaxError(f"unbalanced '{ch}' in '{line.strip()}'")
            stack.pop()
            current.append(ch)
        elif ch.isspace() and not stack:
            flush()
        else:
            current.append(ch)

    if in_quote:
        raise InvalidDirectiveSyntaxError(f"unterminated string in '{line.strip()}'")
    if stack:
        raise InvalidDirectiveSyntaxError(f"unbalanced '{stack[-1]}' in '{line.strip()}'")
    flush()
    return tokens
