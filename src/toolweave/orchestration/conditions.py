"""Condition expressions for conditional invocations.

Expressions are written in a small, side-effect free language and never
executed as host code. Supported constructs:

* literals: numbers, ``'single'`` / ``"double"`` quoted strings, ``true``,
  ``false``, ``null``
* paths: ``result``, ``result.items[0].name``, ``state["key"]``
* comparisons: ``== != < <= > >=`` (``===`` and ``!==`` are accepted as
  aliases), ``contains``, ``in``, ``matches`` (regex search)
* boolean logic: ``and`` / ``&&``, ``or`` / ``||``, ``not`` / ``!``, parentheses
* functions ``len(x)``, ``exists(x)``, ``lower(x)``, ``upper(x)`` and the
  method forms ``x.includes(y)``, ``x.startsWith(y)``, ``x.endsWith(y)``,
  ``x.length``

Example::

    >>> evaluate_expression("result.count > 2 and result.name contains 'py'",
    ...                     {"result": {"count": 3, "name": "main.py"}})
    True
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from .types import Condition, ConditionKind, ToolResult

__all__ = [
    "ConditionError",
    "Expression",
    "compile_expression",
    "evaluate_expression",
    "evaluate_condition",
    "condition_scope",
]

LOGGER = logging.getLogger(__name__)


class ConditionError(Exception):
    """Raised when an expression cannot be tokenized, parsed or evaluated."""


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<missing>"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

Node = Callable[[Mapping[str, Any]], Any]


# -----------------------------------------------------------------------------
# Tokenizer
# -----------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()\[\].,-])
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "contains", "in", "matches", "true", "false", "null"}
_COMPARISONS = {"==", "!=", "<", "<=", ">", ">=", "contains", "in", "matches"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}
MAX_NESTING = 32


@dataclass(slots=True, frozen=True)
class _Token:
    kind: str
    value: Any
    position: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if match is None:
            raise ConditionError(f"Unexpected character {text[position]!r} at {position}")
        kind = match.lastgroup or ""
        raw = match.group()
        if kind == "number":
            tokens.append(_Token("literal", float(raw) if "." in raw else int(raw), position))
        elif kind == "string":
            tokens.append(_Token("literal", _unescape(raw[1:-1]), position))
        elif kind == "op":
            value = {"===": "==", "!==": "!=", "&&": "and", "||": "or", "!": "not"}.get(raw, raw)
            tokens.append(_Token("keyword" if value in {"and", "or", "not"} else "op", value, position))
        elif kind == "name":
            if raw in ("true", "false", "null"):
                tokens.append(_Token("literal", {"true": True, "false": False, "null": None}[raw], position))
            elif raw in _KEYWORDS:
                tokens.append(_Token("keyword", raw, position))
            else:
                tokens.append(_Token("name", raw, position))
        position = match.end()
    tokens.append(_Token("end", None, len(text)))
    return tokens


def _unescape(body: str) -> str:
    # Unknown escapes keep their backslash so regex classes like \d survive.
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group()), body)


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


class _Parser:
    """Recursive-descent parser turning tokens into evaluation closures."""

    def __init__(self, tokens: Sequence[_Token]) -> None:
        self._tokens = tokens
        self._index = 0
        self._depth = 0

    def parse(self) -> Node:
        node = self._or()
        token = self._peek()
        if token.kind != "end":
            raise ConditionError(f"Unexpected {token.value!r} at {token.position}")
        return node

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, kind: str, value: Any = None) -> bool:
        token = self._peek()
        if token.kind == kind and (value is None or token.value == value):
            self._index += 1
            return True
        return False

    def _expect(self, kind: str, value: Any = None) -> _Token:
        token = self._peek()
        if token.kind != kind or (value is not None and token.value != value):
            raise ConditionError(f"Expected {value or kind!r} at {token.position}")
        return self._advance()

    def _nested(self, parse: Callable[[], Node]) -> Node:
        if self._depth >= MAX_NESTING:
            raise ConditionError(f"Expression nested deeper than {MAX_NESTING} levels")
        self._depth += 1
        try:
            return parse()
        finally:
            self._depth -= 1

    def _or(self) -> Node:
        return self._nested(self._or_chain)

    def _or_chain(self) -> Node:
        node = self._and()
        while self._accept("keyword", "or"):
            left, right = node, self._and()
            node = lambda env, l=left, r=right: bool(l(env)) or bool(r(env))  # noqa: E731
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("keyword", "and"):
            left, right = node, self._not()
            node = lambda env, l=left, r=right: bool(l(env)) and bool(r(env))  # noqa: E731
        return node

    def _not(self) -> Node:
        if self._accept("keyword", "not"):
            operand = self._nested(self._not)
            return lambda env: not operand(env)
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._postfix()
        token = self._peek()
        if token.value in _COMPARISONS and token.kind in ("op", "keyword"):
            self._advance()
            right = self._postfix()
            compare = _COMPARATORS[token.value]
            return lambda env: compare(_value(left(env)), _value(right(env)))
        return left

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._accept("op", "."):
                name = self._expect("name").value
                if self._accept("op", "("):
                    args = self._arguments()
                    node = _method_call(node, name, args)
                else:
                    node = _attribute(node, name)
            elif self._accept("op", "["):
                key = self._or()
                self._expect("op", "]")
                node = _index(node, key)
            else:
                return node

    def _primary(self) -> Node:
        token = self._advance()
        if token.kind == "literal":
            value = token.value
            return lambda env: value
        if token.kind == "op" and token.value == "(":
            node = self._or()
            self._expect("op", ")")
            return node
        if token.kind == "op" and token.value == "-":
            operand = self._nested(self._postfix)
            return lambda env: -_value(operand(env))
        if token.kind == "name":
            if self._accept("op", "("):
                args = self._arguments()
                return _function_call(token.value, args, token.position)
            name = token.value
            return lambda env: env.get(name, MISSING)
        raise ConditionError(f"Unexpected {token.value!r} at {token.position}")

    def _arguments(self) -> list[Node]:
        args: list[Node] = []
        if self._accept("op", ")"):
            return args
        while True:
            args.append(self._or())
            if self._accept("op", ")"):
                return args
            self._expect("op", ",")


# -----------------------------------------------------------------------------
# Evaluation helpers
# -----------------------------------------------------------------------------


def _value(value: Any) -> Any:
    return None if value is MISSING else value


def _lookup(container: Any, key: Any) -> Any:
    if container is MISSING or container is None:
        return MISSING
    if isinstance(container, Mapping):
        return container.get(key, MISSING)
    if isinstance(container, (list, tuple)) and isinstance(key, int) and not isinstance(key, bool):
        if -len(container) <= key < len(container):
            return container[key]
        return MISSING
    return MISSING


def _attribute(node: Node, name: str) -> Node:
    def evaluate(env: Mapping[str, Any]) -> Any:
        target = node(env)
        if name == "length" and isinstance(target, (str, list, tuple, dict)):
            if not (isinstance(target, dict) and "length" in target):
                return len(target)
        return _lookup(target, name)

    return evaluate


def _index(node: Node, key: Node) -> Node:
    return lambda env: _lookup(node(env), _value(key(env)))


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, (list, tuple, dict, set)):
        return item in container
    raise ConditionError(f"Cannot search inside {type(container).__name__}")


def _matches(value: Any, pattern: Any) -> bool:
    try:
        return re.search(str(pattern), "" if value is None else str(value)) is not None
    except re.error as exc:
        raise ConditionError(f"Invalid pattern {pattern!r}: {exc}") from exc


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "contains": _contains,
    "in": lambda a, b: _contains(b, a),
    "matches": _matches,
}


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value)
    raise ConditionError(f"len() of {type(value).__name__}")


_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": _length,
    "lower": lambda value: str(value).lower(),
    "upper": lambda value: str(value).upper(),
}

_METHODS: dict[str, Callable[[Any, Any], bool]] = {
    "includes": _contains,
    "startsWith": lambda target, prefix: str(target).startswith(str(prefix)),
    "endsWith": lambda target, suffix: str(target).endswith(str(suffix)),
}


def _function_call(name: str, args: list[Node], position: int) -> Node:
    if name == "exists":
        if len(args) != 1:
            raise ConditionError("exists() takes exactly one argument")
        target = args[0]
        return lambda env: target(env) is not MISSING and target(env) is not None
    function = _FUNCTIONS.get(name)
    if function is None:
        raise ConditionError(f"Unknown function {name!r} at {position}")
    if len(args) != 1:
        raise ConditionError(f"{name}() takes exactly one argument")
    argument = args[0]
    return lambda env: function(_value(argument(env)))


def _method_call(node: Node, name: str, args: list[Node]) -> Node:
    method = _METHODS.get(name)
    if method is None:
        raise ConditionError(f"Unknown method {name!r}")
    if len(args) != 1:
        raise ConditionError(f"{name}() takes exactly one argument")
    argument = args[0]
    return lambda env: method(_value(node(env)), _value(argument(env)))


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Expression:
    """A compiled condition expression."""

    source: str
    _node: Node

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        """Evaluate against ``scope``, raising :class:`ConditionError` on failure."""
        try:
            return _value(self._node(scope))
        except ConditionError:
            raise
        except (TypeError, ValueError, KeyError, IndexError, AttributeError, RecursionError) as exc:
            raise ConditionError(f"Cannot evaluate {self.source!r}: {exc}") from exc


@functools.lru_cache(maxsize=256)
def compile_expression(source: str) -> Expression:
    """Compile ``source`` into an :class:`Expression`.

    Raises:
        ConditionError: If the expression is malformed.
    """
    text = (source or "").strip()
    if not text:
        raise ConditionError("Empty expression")
    try:
        node = _Parser(_tokenize(text)).parse()
    except RecursionError as exc:
        raise ConditionError("Expression is too long to compile") from exc
    return Expression(source=text, _node=node)


def evaluate_expression(source: str, scope: Mapping[str, Any]) -> Any:
    """Compile and evaluate ``source`` in one step."""
    return compile_expression(source).evaluate(scope)


def condition_scope(
    condition: Condition,
    source: ToolResult | None,
    results_by_id: Mapping[str, ToolResult],
    shared_state: Mapping[str, Any],
) -> dict[str, Any]:
    """Names visible to an expression of ``condition``'s kind."""
    if condition.kind is ConditionKind.RESULT:
        payload = source.payload if source is not None else None
        return {"result": payload, "payload": payload}
    return {
        "result": source.to_dict() if source is not None else None,
        "state": dict(shared_state),
        "results": {key: value.to_dict() for key, value in results_by_id.items()},
    }


def evaluate_condition(
    condition: Condition,
    results_by_id: Mapping[str, ToolResult],
    shared_state: Mapping[str, Any] | None = None,
) -> bool:
    """Decide whether an invocation guarded by ``condition`` should run.

    A missing source result, or an expression that fails to compile or
    evaluate, makes the condition false.
    """
    source = results_by_id.get(condition.source_id) if condition.source_id else None
    if condition.source_id and source is None:
        LOGGER.debug("Condition source '%s' has no result yet", condition.source_id)
        return False

    if condition.kind is ConditionKind.ERROR:
        return source is not None and not source.success

    if not condition.expression.strip():
        return source is not None and source.success

    if condition.kind is ConditionKind.RESULT and source is None:
        return False

    scope = condition_scope(condition, source, results_by_id, shared_state or {})
    try:
        return bool(evaluate_expression(condition.expression, scope))
    except ConditionError as exc:
        LOGGER.warning("Condition %r evaluated as false: %s", condition.expression, exc)
        return False
