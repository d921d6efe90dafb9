"""Template rendering for message subjects, bodies and action payloads."""

import re
from typing import Any, Dict, Union

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def extract_variables(template: str | None) -> list[str]:
    """
    List the distinct placeholder names of a template in order of appearance.

    Examples:
        extract_variables("Olá {{client_name}}, {{client_name}}!") -> ["client_name"]
    """
    if not template:
        return []
    return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(template)))


def render_string(template: str | None, data: Dict[str, Any] | None) -> str | None:
    """
    Substitute every ``{{key}}`` placeholder with the string form of ``data[key]``.

    Placeholders whose key is missing from ``data`` or holds ``None`` are left
    verbatim, so a missing value shows up in a preview instead of rendering blank.
    Each placeholder is resolved against ``data`` only, never against text that
    an earlier substitution produced.
    """
    if not template or data is None:
        return template

    def _replace(match: re.Match[str]) -> str:
        value = data.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def render_template(
    template: Union[str, dict, list, None],
    data: Dict[str, Any] | None,
) -> Union[str, dict, list, None]:
    """
    Render a template, recursing into dict values and list items.

    Non-string leaves (numbers, booleans) are returned unchanged.
    """
    if isinstance(template, dict):
        return {key: render_template(value, data) for key, value in template.items()}
    if isinstance(template, list):
        return [render_template(item, data) for item in template]
    if not isinstance(template, str):
        return template
    return render_string(template, data)
