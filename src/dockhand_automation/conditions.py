"""Task conditions.

Conditions are small immutable objects evaluated against a
:class:`~dockhand_automation.types.HostContext`. They are parsed from the
strings used in plan files::

    when = "install_docker"
    when = "os_family == 'Debian'"
    when = ["install_docker", "distribution != 'Debian'"]
    when = "create_ansible_user and install_docker"

An undefined variable evaluates to false so optional feature flags can be left
out of the inventory entirely. A variable that is defined but cannot be read as
a boolean raises :class:`ConditionError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Union

from .errors import ConditionError
from .plan import PlannedTask
from .types import HostContext

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}

_IDENT = r"[A-Za-z_][A-Za-z0-9_.]*"
_COMPARE_RE = re.compile(rf"^\s*({_IDENT})\s*(==|!=)\s*(.+?)\s*$")
_VARIABLE_RE = re.compile(rf"^\s*({_IDENT})\s*$")
# Quoted literals are matched whole so an "and" inside them is not a separator.
_AND_RE = re.compile(r"'[^']*'|\"[^\"]*\"|\s+and\s+")


@dataclass(frozen=True)
class VariableCondition:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FactEquals:
    fact: str
    value: str
    negate: bool = False

    def __str__(self) -> str:
        op = "!=" if self.negate else "=="
        return f"{self.fact} {op} '{self.value}'"


@dataclass(frozen=True)
class AllOf:
    conditions: tuple["Condition", ...]

    def __str__(self) -> str:
        return " and ".join(str(c) for c in self.conditions)


Condition = Union[VariableCondition, FactEquals, AllOf]


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ConditionError(f"Unable to interpret {value!r} as a boolean")


def evaluate(condition: Condition, context: HostContext) -> bool:
    if isinstance(condition, AllOf):
        for sub in condition.conditions:
            if not evaluate(sub, context):
                return False
        return True
    if isinstance(condition, FactEquals):
        actual = context.lookup_fact(condition.fact)
        if actual is None:
            return condition.negate
        matched = _as_text(actual) == condition.value
        return not matched if condition.negate else matched
    if isinstance(condition, VariableCondition):
        value = context.lookup(condition.name)
        if value is None:
            return False
        try:
            return to_bool(value)
        except ConditionError:
            raise ConditionError(
                f"Variable '{condition.name}' is not a boolean (got {value!r})"
            ) from None
    raise ConditionError(f"Unsupported condition {condition!r}")


def evaluate_all(conditions: Iterable[Condition], context: HostContext) -> bool:
    return evaluate(AllOf(tuple(conditions)), context)


def should_run(planned: PlannedTask, context: HostContext) -> bool:
    """Role inclusion conditions gate every task of the role."""
    return evaluate_all((*planned.role_when, *planned.task.when), context)


def parse_condition(raw: Any) -> Condition:
    if isinstance(raw, bool):
        raise ConditionError("Literal booleans are not valid conditions; use a variable")
    if isinstance(raw, (list, tuple)):
        return AllOf(tuple(parse_condition(item) for item in raw))
    if not isinstance(raw, str):
        raise ConditionError(f"Condition must be a string or list, got {raw!r}")
    text = raw.strip()
    if not text:
        raise ConditionError("Empty condition")
    terms = _split_and(text)
    if len(terms) > 1:
        return AllOf(tuple(_parse_term(term) for term in terms))
    return _parse_term(text)


def parse_conditions(raw: Any) -> tuple[Condition, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple)):
        return tuple(parse_condition(item) for item in raw)
    return (parse_condition(raw),)


def _parse_term(text: str) -> Condition:
    match = _COMPARE_RE.match(text)
    if match:
        name, op, literal = match.groups()
        return FactEquals(name, _unquote(literal), negate=(op == "!="))
    match = _VARIABLE_RE.match(text)
    if match:
        return VariableCondition(match.group(1))
    raise ConditionError(f"Cannot parse condition '{text}'")


def _split_and(text: str) -> list[str]:
    terms: list[str] = []
    start = 0
    for match in _AND_RE.finditer(text):
        if match.group().strip() == "and":
            terms.append(text[start : match.start()])
            start = match.end()
    terms.append(text[start:])
    return terms


def _unquote(literal: str) -> str:
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "'\"":
        return literal[1:-1]
    return literal


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
