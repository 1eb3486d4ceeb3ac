"""``{{name}}`` placeholder substitution for step fields."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

_TOKEN = re.compile(r"\{\{(\w+)\}\}")


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def replace_variables(text: Optional[str], variables: Mapping[str, Any]) -> str:
    """Replace every ``{{name}}`` token with the bound value.

    Unbound names become the empty string. There is no escaping, nesting or
    expression support; the replacement text is never rescanned.
    """

    if not text:
        return ""
    return _TOKEN.sub(lambda match: stringify(variables.get(match.group(1))), text)
