"""
Expression evaluation for ``${{ }}`` placeholders.

Supports the subset of the Actions expression language that templates use:
literals, context property access, comparison and logical operators, and
the string/JSON helper functions. Anything that only the runner can know
(step outputs, status functions, ``hashFiles``...) raises
``UnresolvedExpression`` internally, and callers leave the original text in
place.
"""

from __future__ import annotations

import json
import math
import re
from functools import lru_cache
from typing import Any, Iterator, Mapping, Optional

# Template pattern: ${{ expression }}
_TEMPLATE_RE = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>-?(?:0x[0-9a-fA-F]+|\d+(?:\.\d+)?(?:[eE][+-]?\d+)?))
      | (?P<string>'(?:[^']|'')*')
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!()\[\],.])
      | (?P<name>[A-Za-z_][A-Za-z0-9_-]*)
    )
    """,
    re.VERBOSE,
)

KNOWN_CONTEXTS = {
    "inputs", "secrets", "matrix", "env", "vars", "github", "runner",
    "steps", "needs", "job", "jobs", "strategy",
}
RUNTIME_FUNCTIONS = {"hashfiles", "success", "always", "failure", "cancelled"}
_LITERALS = {"true": True, "false": False, "null": None}


class ExpressionError(ValueError):
    """An expression could not be parsed or uses an unknown function/context."""


class UnresolvedExpression(Exception):
    """An expression depends on information only available on the runner."""


class PartialContext(dict):
    """A context of which only some keys are known before the run; missing keys are deferred."""


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(f"Unexpected character at {pos} in expression: {text!r}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    """Recursive-descent parser producing a tuple-based AST."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def parse(self):
        if not self.tokens:
            raise ExpressionError("Empty expression")
        node = self._or()
        if self.pos != len(self.tokens):
            raise ExpressionError(f"Unexpected token {self.tokens[self.pos][1]!r} in {self.text!r}")
        return node

    def _peek(self) -> Optional[str]:
        if self.pos < len(self.tokens):
            kind, value = self.tokens[self.pos]
            return value if kind == "op" else None
        return None

    def _expect(self, op: str):
        if self._peek() != op:
            raise ExpressionError(f"Expected {op!r} in {self.text!r}")
        self.pos += 1

    def _or(self):
        node = self._and()
        while self._peek() == "||":
            self.pos += 1
            node = ("or", node, self._and())
        return node

    def _and(self):
        node = self._equality()
        while self._peek() == "&&":
            self.pos += 1
            node = ("and", node, self._equality())
        return node

    def _equality(self):
        node = self._comparison()
        while self._peek() in ("==", "!="):
            op = self.tokens[self.pos][1]
            self.pos += 1
            node = ("cmp", op, node, self._comparison())
        return node

    def _comparison(self):
        node = self._unary()
        while self._peek() in ("<", "<=", ">", ">="):
            op = self.tokens[self.pos][1]
            self.pos += 1
            node = ("cmp", op, node, self._unary())
        return node

    def _unary(self):
        if self._peek() == "!":
            self.pos += 1
            return ("not", self._unary())
        return self._postfix()

    def _postfix(self):
        node = self._primary()
        while True:
            op = self._peek()
            if op == ".":
                self.pos += 1
                if self.pos >= len(self.tokens) or self.tokens[self.pos][0] != "name":
                    raise ExpressionError(f"Expected property name in {self.text!r}")
                node = ("index", node, ("lit", self.tokens[self.pos][1]))
                self.pos += 1
            elif op == "[":
                self.pos += 1
                key = self._or()
                self._expect("]")
                node = ("index", node, key)
            else:
                return node

    def _primary(self):
        if self.pos >= len(self.tokens):
            raise ExpressionError(f"Unexpected end of expression: {self.text!r}")
        kind, value = self.tokens[self.pos]
        self.pos += 1

        if kind == "number":
            return ("lit", int(value, 16) if "x" in value.lower() else _parse_number(value))
        if kind == "string":
            return ("lit", value[1:-1].replace("''", "'"))
        if kind == "op" and value == "(":
            node = self._or()
            self._expect(")")
            return node
        if kind == "name":
            if value in _LITERALS:
                return ("lit", _LITERALS[value])
            if self._peek() == "(":
                self.pos += 1
                args = []
                if self._peek() != ")":
                    args.append(self._or())
                    while self._peek() == ",":
                        self.pos += 1
                        args.append(self._or())
                self._expect(")")
                return ("call", value.lower(), args)
            if value.lower() not in KNOWN_CONTEXTS:
                raise ExpressionError(f"Unknown context '{value}' in {self.text!r}")
            return ("ctx", value.lower())
        raise ExpressionError(f"Unexpected token {value!r} in {self.text!r}")


def _parse_number(text: str) -> Any:
    number = float(text)
    return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number


@lru_cache(maxsize=1024)
def parse(expression: str):
    """Parse an expression (without the ``${{ }}`` wrapper) into an AST."""
    return _Parser(expression.strip()).parse()


# --- Value semantics ---


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def _to_number(value: Any) -> float:
    kind = _kind(value)
    if kind == "null":
        return 0.0
    if kind in ("boolean", "number"):
        return float(value)
    if kind == "string":
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(int(text, 16)) if text.lower().startswith("0x") else float(text)
        except ValueError:
            return math.nan
    return math.nan


def truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_string(value: Any) -> str:
    """Convert a value the way it appears when interpolated into text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    return str(value)


def _equals(left: Any, right: Any) -> bool:
    lk, rk = _kind(left), _kind(right)
    if lk == rk:
        if lk == "string":
            return left.lower() == right.lower()
        if lk == "object":
            return left is right
        return left == right
    return _to_number(left) == _to_number(right)


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _equals(left, right)
    if op == "!=":
        return not _equals(left, right)
    if _kind(left) == "string" and _kind(right) == "string":
        a, b = left.lower(), right.lower()
    else:
        a, b = _to_number(left), _to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _lookup(obj: Any, key: Any) -> Any:
    if isinstance(obj, Mapping):
        if isinstance(key, str):
            lowered = key.lower()
            for name, value in obj.items():
                if str(name).lower() == lowered:
                    return value
        if isinstance(obj, PartialContext):
            raise UnresolvedExpression(str(key))
        return None
    if isinstance(obj, list) and _kind(key) == "number":
        index = int(key)
        return obj[index] if 0 <= index < len(obj) else None
    return None


def _format(fmt: Any, args: list[Any]) -> str:
    text = to_string(fmt)

    def replacer(m: re.Match) -> str:
        token = m.group(0)
        if token == "{{":
            return "{"
        if token == "}}":
            return "}"
        index = int(m.group(1))
        if index >= len(args):
            raise ExpressionError(f"format() has no argument {index}")
        return to_string(args[index])

    return re.sub(r"\{\{|\}\}|\{(\d+)\}", replacer, text)


def _call(name: str, args: list[Any]) -> Any:
    if name == "contains":
        search, item = args
        if isinstance(search, list):
            return any(_equals(x, item) for x in search)
        return to_string(item).lower() in to_string(search).lower()
    if name == "startswith":
        return to_string(args[0]).lower().startswith(to_string(args[1]).lower())
    if name == "endswith":
        return to_string(args[0]).lower().endswith(to_string(args[1]).lower())
    if name == "format":
        return _format(args[0], args[1:])
    if name == "join":
        sep = to_string(args[1]) if len(args) > 1 else ","
        if isinstance(args[0], list):
            return sep.join(to_string(x) for x in args[0])
        return to_string(args[0])
    if name == "tojson":
        return json.dumps(args[0], indent=2)
    if name == "fromjson":
        try:
            return json.loads(to_string(args[0]))
        except json.JSONDecodeError as e:
            raise ExpressionError(f"fromJSON() got invalid JSON: {e}") from e
    raise ExpressionError(f"Unknown function: {name}")


_ARITY = {"contains": 2, "startswith": 2, "endswith": 2, "tojson": 1, "fromjson": 1}


def _eval(node, contexts: Mapping[str, Any]) -> Any:
    op = node[0]
    if op == "lit":
        return node[1]
    if op == "ctx":
        if node[1] not in contexts:
            raise UnresolvedExpression(node[1])
        return contexts[node[1]]
    if op == "index":
        return _lookup(_eval(node[1], contexts), _eval(node[2], contexts))
    if op == "not":
        return not truthy(_eval(node[1], contexts))
    if op == "and":
        left = _eval(node[1], contexts)
        return _eval(node[2], contexts) if truthy(left) else left
    if op == "or":
        left = _eval(node[1], contexts)
        return left if truthy(left) else _eval(node[2], contexts)
    if op == "cmp":
        return _compare(node[1], _eval(node[2], contexts), _eval(node[3], contexts))
    if op == "call":
        name, arg_nodes = node[1], node[2]
        if name in RUNTIME_FUNCTIONS:
            raise UnresolvedExpression(f"{name}()")
        expected = _ARITY.get(name)
        if expected is not None and len(arg_nodes) != expected:
            raise ExpressionError(f"{name}() takes {expected} argument(s), got {len(arg_nodes)}")
        if name in ("format", "join") and not arg_nodes:
            raise ExpressionError(f"{name}() needs at least one argument")
        return _call(name, [_eval(arg, contexts) for arg in arg_nodes])
    raise ExpressionError(f"Unknown node: {op}")


def evaluate(expression: str, contexts: Mapping[str, Any]) -> Any:
    """
    Evaluate a bare expression against the given contexts.

    Raises:
        ExpressionError: If the expression is malformed
        UnresolvedExpression: If it needs a context or function only the runner has
    """
    return _eval(parse(expression), contexts)


# --- Rendering ---


def _whole_expression(value: str) -> Optional[str]:
    """Return the inner text if ``value`` is exactly one ``${{ }}`` expression."""
    stripped = value.strip()
    m = _TEMPLATE_RE.fullmatch(stripped)
    if m and "${{" not in m.group(1):
        return m.group(1)
    return None


def render_string(value: str, contexts: Mapping[str, Any]) -> Any:
    """
    Substitute ``${{ }}`` placeholders in a string.

    A string that is a single expression renders to the typed value; mixed
    text interpolates each expression as a string. Unresolvable expressions
    are left untouched.
    """
    inner = _whole_expression(value)
    if inner is not None:
        try:
            return evaluate(inner, contexts)
        except UnresolvedExpression:
            return value

    def replacer(m: re.Match) -> str:
        try:
            return to_string(evaluate(m.group(1), contexts))
        except UnresolvedExpression:
            return m.group(0)

    return _TEMPLATE_RE.sub(replacer, value)


def render_value(value: Any, contexts: Mapping[str, Any]) -> Any:
    """Deep-render all strings in a dict/list structure."""
    if isinstance(value, str):
        return render_string(value, contexts) if "${{" in value else value
    if isinstance(value, dict):
        return {k: render_value(v, contexts) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(item, contexts) for item in value]
    return value


def evaluate_condition(condition: Any, contexts: Mapping[str, Any]) -> Optional[bool]:
    """
    Evaluate an ``if:`` condition.

    Returns True/False when the outcome is known from the contexts, or None
    when only the runner can decide.
    """
    if condition is None:
        return True
    if isinstance(condition, bool):
        return condition
    text = str(condition)
    inner = _whole_expression(text)
    if inner is None and "${{" in text:
        # Mixed text renders to a string, which is truthy unless empty
        rendered = render_string(text, contexts)
        return None if _TEMPLATE_RE.search(rendered) else truthy(rendered)
    try:
        return truthy(evaluate(inner if inner is not None else text, contexts))
    except UnresolvedExpression:
        return None


def expressions_in(value: Any, bare: bool = False) -> Iterator[str]:
    """Yield the expression texts found in a (possibly nested) value."""
    if isinstance(value, str):
        if bare and "${{" not in value:
            if value.strip():
                yield value
            return
        for m in _TEMPLATE_RE.finditer(value):
            yield m.group(1)
    elif isinstance(value, dict):
        for item in value.values():
            yield from expressions_in(item, bare)
    elif isinstance(value, list):
        for item in value:
            yield from expressions_in(item, bare)


def context_references(expression: str) -> Iterator[tuple[str, str]]:
    """Yield (context, property) pairs such as ("inputs", "push") used by an expression."""

    def walk(node):
        op = node[0]
        if op == "index" and node[1][0] == "ctx" and node[2][0] == "lit" and isinstance(node[2][1], str):
            yield node[1][1], node[2][1]
        if op in ("index", "and", "or", "not"):
            for child in node[1:]:
                yield from walk(child)
        elif op == "cmp":
            yield from walk(node[2])
            yield from walk(node[3])
        elif op == "call":
            for arg in node[2]:
                yield from walk(arg)

    yield from walk(parse(expression))
