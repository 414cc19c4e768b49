"""Response template DSL: parser and renderer.

Syntax:
  {query} {processed_query} {language} {timestamp} {date} {time} {param.KEY}
  {some.path[0].field}                  any dotted path into the render context
  {if COND}...{else}...{endif}          COND: a == b, a != b, a > b, a < b,
                                        exists PATH, empty PATH, or bare PATH
  {for item in PATH}...{endfor}         {item}, {item.field}, {index} (1-based)
  {format:FN(PATH[, ARG])}              see FormatFunction

Sources are parsed once (cached by source text) into a node tree and evaluated
against a plain dict/list context. Braces that do not form a tag are kept as
literal text, as are placeholders that do not resolve.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Union

logger = logging.getLogger(__name__)

_PATH_SRC = r"[A-Za-z_]\w*(?:\.\w+|\[\d+\])*"
_TAG_RE = re.compile(
    r"\{(?:"
    r"(?P<if>if\s+[^{}]+?)"
    r"|(?P<else>else)"
    r"|(?P<endif>endif)"
    r"|(?P<for>for\s+[A-Za-z_]\w*\s+in\s+" + _PATH_SRC + r")"
    r"|(?P<endfor>endfor)"
    r"|format:(?P<format>[A-Za-z_]\w*\s*\([^{}]*\))"
    r"|(?P<path>" + _PATH_SRC + r")"
    r")\}"
)
_FOR_RE = re.compile(r"for\s+(?P<var>[A-Za-z_]\w*)\s+in\s+(?P<path>" + _PATH_SRC + r")")
_FORMAT_RE = re.compile(r"(?P<fn>[A-Za-z_]\w*)\s*\((?P<args>[^{}]*)\)")
_SEGMENT_RE = re.compile(r"\.?(\w+)|\[(\d+)\]")
_COMPARE_RE = re.compile(r"^(?P<left>.+?)\s*(?P<op>==|!=|>|<)\s*(?P<right>.+)$")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


class FormatFunction(str, Enum):
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    UPPER = "upper"
    LOWER = "lower"
    CAPITALIZE = "capitalize"
    NUMBER = "number"
    JSON = "json"
    LIST = "list"
    COUNT = "count"
    TRUNCATE = "truncate"


class TemplateSyntaxError(ValueError):
    """Raised on malformed tags, and by parse_template(strict=True) on unbalanced blocks."""


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

Segment = Union[str, int]


@dataclass(frozen=True)
class Path:
    raw: str
    segments: tuple[Segment, ...]

    @classmethod
    def parse(cls, raw: str) -> Path:
        raw = raw.strip()
        segments: list[Segment] = []
        for name, index in _SEGMENT_RE.findall(raw):
            segments.append(int(index) if index else name)
        return cls(raw=raw, segments=tuple(segments))

    def resolve(self, scope: dict[str, Any]) -> Any:
        """Return the value at this path in *scope*, or MISSING."""
        if not self.segments:
            return MISSING
        current: Any = scope
        for seg in self.segments:
            if isinstance(seg, int):
                if isinstance(current, (list, tuple)) and -len(current) <= seg < len(current):
                    current = current[seg]
                else:
                    return MISSING
            elif isinstance(current, dict):
                if seg not in current:
                    return MISSING
                current = current[seg]
            elif hasattr(current, seg) and not seg.startswith("_"):
                current = getattr(current, seg)
            else:
                return MISSING
        return current


@dataclass(frozen=True)
class Literal:
    value: Any


Operand = Union[Path, Literal]


@dataclass(frozen=True)
class Comparison:
    left: Operand
    op: str
    right: Operand


@dataclass(frozen=True)
class Exists:
    path: Path
    negate: bool = False  # True for "empty PATH"


@dataclass(frozen=True)
class Truthy:
    path: Path


Condition = Union[Comparison, Exists, Truthy]


@dataclass
class Text:
    text: str


@dataclass
class Placeholder:
    path: Path
    raw: str


@dataclass
class IfBlock:
    condition: Condition | None
    then: list[Node] = field(default_factory=list)
    otherwise: list[Node] = field(default_factory=list)


@dataclass
class ForBlock:
    var: str
    path: Path
    body: list[Node] = field(default_factory=list)


@dataclass
class FormatCall:
    function: str
    path: Path
    args: tuple[str, ...]
    raw: str


Node = Union[Text, Placeholder, IfBlock, ForBlock, FormatCall]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_operand(raw: str) -> Operand:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return Literal(raw[1:-1])
    if _NUMBER_RE.match(raw):
        return Literal(float(raw))
    if raw in ("true", "false"):
        return Literal(raw == "true")
    if raw == "null":
        return Literal(None)
    return Path.parse(raw)


def parse_condition(expr: str) -> Condition | None:
    """Parse a condition expression; None if it cannot be parsed."""
    expr = expr.strip()
    if expr.startswith("exists "):
        return Exists(Path.parse(expr[len("exists "):]))
    if expr.startswith("empty "):
        return Exists(Path.parse(expr[len("empty "):]), negate=True)
    match = _COMPARE_RE.match(expr)
    if match:
        return Comparison(
            left=_parse_operand(match.group("left")),
            op=match.group("op"),
            right=_parse_operand(match.group("right")),
        )
    if re.fullmatch(_PATH_SRC, expr):
        return Truthy(Path.parse(expr))
    return None


def _parse_format(spec: str, raw: str) -> FormatCall:
    match = _FORMAT_RE.fullmatch(spec.strip())
    if match is None:
        raise TemplateSyntaxError(f"Malformed format call {raw!r}")
    args = [a.strip() for a in match.group("args").split(",")] if match.group("args").strip() else []
    path = Path.parse(args[0]) if args else Path(raw="", segments=())
    return FormatCall(function=match.group("fn"), path=path, args=tuple(args[1:]), raw=raw)


@dataclass
class _Frame:
    kind: str  # root | if | for
    nodes: list[Node]
    raw: str = ""
    block: IfBlock | ForBlock | None = None
    in_else: bool = False


def _close_unbalanced(frame: _Frame) -> list[Node]:
    """Flatten an unclosed block back into literal tag text + its children."""
    nodes: list[Node] = [Text(frame.raw)]
    if isinstance(frame.block, IfBlock):
        nodes.extend(frame.block.then)
        if frame.in_else:
            nodes.append(Text("{else}"))
            nodes.extend(frame.block.otherwise)
    elif isinstance(frame.block, ForBlock):
        nodes.extend(frame.block.body)
    return nodes


@lru_cache(maxsize=256)
def _parse_cached(source: str) -> tuple[Node, ...]:
    return tuple(parse_template(source))


def parse_template(source: str, *, strict: bool = False) -> list[Node]:
    """Parse *source* into a node list.

    Unbalanced ``{else}``/``{endif}``/``{endfor}`` tags and unclosed blocks are
    kept as literal text unless *strict* is set.

    Raises:
        TemplateSyntaxError: On unbalanced blocks when *strict* is True.
    """
    stack: list[_Frame] = [_Frame("root", [])]
    pos = 0

    def emit(node: Node) -> None:
        top = stack[-1]
        if isinstance(top.block, IfBlock) and top.in_else:
            top.block.otherwise.append(node)
        elif isinstance(top.block, IfBlock):
            top.block.then.append(node)
        elif isinstance(top.block, ForBlock):
            top.block.body.append(node)
        else:
            top.nodes.append(node)

    def stray(raw: str) -> None:
        if strict:
            raise TemplateSyntaxError(f"Unbalanced tag {raw!r}")
        emit(Text(raw))

    for match in _TAG_RE.finditer(source):
        if match.start() > pos:
            emit(Text(source[pos : match.start()]))
        pos = match.end()
        raw = match.group(0)

        if match.group("if"):
            block = IfBlock(condition=parse_condition(match.group("if")[2:]))
            stack.append(_Frame("if", [], raw=raw, block=block))
        elif match.group("else"):
            top = stack[-1]
            if top.kind == "if" and not top.in_else:
                top.in_else = True
            else:
                stray(raw)
        elif match.group("endif"):
            if stack[-1].kind == "if":
                frame = stack.pop()
                emit(frame.block)  # type: ignore[arg-type]
            else:
                stray(raw)
        elif match.group("for"):
            m = _FOR_RE.fullmatch(match.group("for"))
            if m is None:
                raise TemplateSyntaxError(f"Malformed loop {raw!r}")
            block = ForBlock(var=m.group("var"), path=Path.parse(m.group("path")))
            stack.append(_Frame("for", [], raw=raw, block=block))
        elif match.group("endfor"):
            if stack[-1].kind == "for":
                frame = stack.pop()
                emit(frame.block)  # type: ignore[arg-type]
            else:
                stray(raw)
        elif match.group("format"):
            emit(_parse_format(match.group("format"), raw))
        else:
            emit(Placeholder(path=Path.parse(match.group("path")), raw=raw))

    if pos < len(source):
        emit(Text(source[pos:]))

    while len(stack) > 1:
        frame = stack.pop()
        if strict:
            raise TemplateSyntaxError(f"Unclosed block {frame.raw!r}")
        for node in _close_unbalanced(frame):
            emit(node)
    return stack[0].nodes


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def stringify(value: Any) -> str:
    """Render a context value as template text (objects and arrays as JSON)."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _is_present(value: Any) -> bool:
    if value is None or value is MISSING:
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def _operand_value(operand: Operand, scope: dict[str, Any]) -> Any:
    if isinstance(operand, Literal):
        return operand.value
    value = operand.resolve(scope)
    # Unresolvable bare words compare as their own text: {if language == ja}
    return operand.raw if value is MISSING else value


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    return float(value)


def evaluate_condition(condition: Condition | None, scope: dict[str, Any]) -> bool:
    """Evaluate *condition*; any failure evaluates to False."""
    if condition is None:
        return False
    try:
        if isinstance(condition, Exists):
            present = _is_present(condition.path.resolve(scope))
            return not present if condition.negate else present
        if isinstance(condition, Truthy):
            value = condition.path.resolve(scope)
            if value is MISSING:
                return False
            if isinstance(value, str):
                return value.strip().lower() not in ("", "false", "0")
            return bool(value)

        left = _operand_value(condition.left, scope)
        right = _operand_value(condition.right, scope)
        if condition.op in (">", "<"):
            lnum, rnum = _as_number(left), _as_number(right)
            return lnum > rnum if condition.op == ">" else lnum < rnum
        try:
            equal = _as_number(left) == _as_number(right)
        except (TypeError, ValueError):
            equal = stringify(left) == stringify(right)
        return equal if condition.op == "==" else not equal
    except Exception as exc:
        logger.debug("Template condition failed: %s", exc)
        return False


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch seconds; millisecond timestamps are detected by magnitude
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip().replace("Z", "+00:00")
    return datetime.fromisoformat(text)


def _format_number(value: Any, decimals: str | None) -> str:
    number = float(value)
    if decimals is not None:
        return f"{number:,.{int(decimals)}f}"
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.2f}"


def apply_format(function: str, value: Any, args: tuple[str, ...] = ()) -> str:
    """Apply a format function to *value*.

    Unknown functions return the raw value; failures raise.
    """
    try:
        fn = FormatFunction(function.lower())
    except ValueError:
        return stringify(value)

    if fn is FormatFunction.DATE:
        return _to_datetime(value).strftime("%Y-%m-%d")
    if fn is FormatFunction.TIME:
        return _to_datetime(value).strftime("%H:%M")
    if fn is FormatFunction.DATETIME:
        return _to_datetime(value).strftime("%Y-%m-%d %H:%M")
    if fn is FormatFunction.UPPER:
        return stringify(value).upper()
    if fn is FormatFunction.LOWER:
        return stringify(value).lower()
    if fn is FormatFunction.CAPITALIZE:
        text = stringify(value)
        return text[:1].upper() + text[1:]
    if fn is FormatFunction.NUMBER:
        return _format_number(value, args[0] if args else None)
    if fn is FormatFunction.JSON:
        return json.dumps(value, ensure_ascii=False)
    if fn is FormatFunction.LIST:
        if isinstance(value, (list, tuple)):
            return "\n".join(f"• {stringify(item)}" for item in value)
        return stringify(value)
    if fn is FormatFunction.COUNT:
        if value is None:
            return "0"
        return str(len(value))
    # TRUNCATE
    limit = int(args[0]) if args else 100
    text = stringify(value)
    return text if len(text) <= limit else text[:limit] + "..."


def _render_nodes(nodes: list[Node] | tuple[Node, ...], scope: dict[str, Any], out: list[str]) -> None:
    for node in nodes:
        if isinstance(node, Text):
            out.append(node.text)
        elif isinstance(node, Placeholder):
            value = node.path.resolve(scope)
            out.append(node.raw if value is MISSING else stringify(value))
        elif isinstance(node, IfBlock):
            branch = node.then if evaluate_condition(node.condition, scope) else node.otherwise
            _render_nodes(branch, scope, out)
        elif isinstance(node, ForBlock):
            items = node.path.resolve(scope)
            if not isinstance(items, (list, tuple)):
                continue
            for i, item in enumerate(items, start=1):
                inner = dict(scope)
                inner[node.var] = item
                inner["index"] = i
                _render_nodes(node.body, inner, out)
        elif isinstance(node, FormatCall):
            value = node.path.resolve(scope)
            if value is MISSING:
                continue
            try:
                out.append(apply_format(node.function, value, node.args))
            except Exception as exc:
                logger.debug("Format %s failed: %s", node.raw, exc)


def render_template(source: str, variables: dict[str, Any]) -> str:
    """Render template *source* against *variables*."""
    out: list[str] = []
    _render_nodes(_parse_cached(source), variables, out)
    return "".join(out)
