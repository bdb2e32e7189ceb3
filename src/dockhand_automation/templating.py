from __future__ import annotations

import re
from typing import Any, Mapping

import jinja2

_JINJA_RE = re.compile(r"{[{%#]")
_SINGLE_EXPR_RE = re.compile(r"^\s*{{(?P<expr>[^{}]+)}}\s*$")


def looks_like_jinja(text: str) -> bool:
    return bool(_JINJA_RE.search(text))


class TemplateRenderer:
    """Renders task arguments and template files against host variables.

    A string that consists of a single ``{{ expression }}`` keeps the native
    type of the expression, so ``groups = "{{ docker_groups }}"`` yields a
    list. Undefined variables raise :class:`jinja2.UndefinedError`.
    """

    def __init__(self) -> None:
        self.env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render_text(self, text: str, variables: Mapping[str, Any]) -> str:
        if not looks_like_jinja(text):
            return text
        return self.env.from_string(text).render(**variables)

    def render_value(self, value: Any, variables: Mapping[str, Any]) -> Any:
        if isinstance(value, str):
            match = _SINGLE_EXPR_RE.match(value)
            if match:
                return self._evaluate(match.group("expr").strip(), variables)
            return self.render_text(value, variables)
        if isinstance(value, dict):
            return {k: self.render_value(v, variables) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.render_value(v, variables) for v in value]
        return value

    def _evaluate(self, expression: str, variables: Mapping[str, Any]) -> Any:
        compiled = self.env.compile_expression(expression, undefined_to_none=False)
        value = compiled(**variables)
        if isinstance(value, jinja2.Undefined):
            raise jinja2.UndefinedError(f"'{expression}' is undefined")
        return value
