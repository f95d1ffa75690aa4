"""
{{placeholder}} message templating.
"""

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{\{(.*?)\}\}")

_MISSING = object()


class TemplateError(KeyError):
    """Raised by the strict renderer when a placeholder cannot be resolved."""

    pass


def lookup_path(context: Any, path: str) -> Any:
    """
    Resolve a dotted path against nested mappings and objects.

    Args:
        context: Root mapping or object
        path: Dotted path such as "workflow.name"

    Returns:
        The value found, or a sentinel when any segment is missing
    """
    value = context
    for key in path.strip().split("."):
        if isinstance(value, Mapping):
            if key not in value:
                return _MISSING
            value = value[key]
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = getattr(value, key, _MISSING)
            if value is _MISSING:
                return _MISSING
        else:
            return _MISSING
    return value


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        # Enum members render as their value
        value = value.value
    return str(value)


def render_template(template: str, context: Any) -> str:
    """
    Render a template, replacing unresolved placeholders with "".

    Args:
        template: Text with {{dotted.path}} placeholders
        context: Mapping or object the paths are looked up in

    Returns:
        Rendered text. Never raises for missing paths.
    """
    if not template:
        return ""

    def replace(match: re.Match) -> str:
        value = lookup_path(context, match.group(1))
        if value is _MISSING:
            return ""
        return _format(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def render_template_strict(template: str, context: Any) -> str:
    """
    Render a template, raising TemplateError on the first unresolved path.
    """
    if not template:
        return ""

    def replace(match: re.Match) -> str:
        path = match.group(1).strip()
        value = lookup_path(context, path)
        if value is _MISSING:
            raise TemplateError(path)
        return _format(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def find_placeholders(template: str) -> list[str]:
    """List the placeholder paths used in a template, in order."""
    return [m.group(1).strip() for m in PLACEHOLDER_PATTERN.finditer(template or "")]
