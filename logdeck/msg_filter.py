"""Boolean message expressions over case-insensitive substrings.

Syntax: ``|`` is OR, ``&`` is AND (binds tighter), a ``!`` prefix negates (repeatable),
and parentheses group. Anything else is a literal word matched as a substring.

    foo&bar          message contains foo and bar
    !bar             message does not contain bar
    xml&(CB|AGV)     message contains xml and either CB or AGV

Malformed expressions degrade instead of raising: a stray operator counts as true and
a missing closing parenthesis is tolerated.
"""

import re

OPERATORS = "&|!()"
ADVANCED_SYNTAX = re.compile(r"[&|!()]")


def tokenize(expr: str) -> list[str]:
    tokens = []
    i, n = 0, len(expr)
    while i < n:
        ch = expr[i]
        if ch <= " ":
            i += 1
            continue
        if ch in OPERATORS:
            tokens.append(ch)
            i += 1
            continue
        j = i
        while j < n and expr[j] > " " and expr[j] not in OPERATORS:
            j += 1
        tokens.append(expr[i:j])
        i = j
    return tokens


class _Evaluator:
    def __init__(self, message: str, tokens: list[str]):
        self.message = message
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str | None:
        tok = self.peek()
        self.pos += 1
        return tok

    def parse_or(self) -> bool:
        result = self.parse_and()
        while self.peek() == "|":
            self.take()
            # evaluate every operand so the cursor always advances past it
            right = self.parse_and()
            result = result or right
        return result

    def parse_and(self) -> bool:
        result = self.parse_not()
        while self.peek() == "&":
            self.take()
            right = self.parse_not()
            result = result and right
        return result

    def parse_not(self) -> bool:
        negate = False
        while self.peek() == "!":
            self.take()
            negate = not negate
        value = self.parse_primary()
        return not value if negate else value

    def parse_primary(self) -> bool:
        tok = self.peek()
        if tok is None:
            return True
        if tok == "(":
            self.take()
            value = self.parse_or()
            if self.peek() == ")":
                self.take()
            return value
        self.take()
        if tok in OPERATORS:
            return True
        return tok in self.message


def msg_matches(message, expr) -> bool:
    """True if ``message`` satisfies ``expr``; an empty expression matches everything."""
    query = str(expr or "").lower().strip()
    if not query:
        return True
    tokens = tokenize(query)
    if not tokens:
        return True
    return _Evaluator(str(message or "").lower(), tokens).parse_or()


def has_advanced_syntax(expr) -> bool:
    return bool(ADVANCED_SYNTAX.search(str(expr or "").strip()))
