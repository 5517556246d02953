from __future__ import annotations

from typing import Mapping


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """
    Replace {{Key}} tokens with values from `variables`.

    Unknown keys render as "", an unterminated "{{" is copied through, and substituted
    values are never expanded again.
    """
    if not template:
        return template

    out: list[str] = []
    i = 0
    n = len(template)
    while i < n:
        if template.startswith("{{", i):
            end = template.find("}}", i + 2)
            if end < 0:
                out.append(template[i:])
                break
            key = template[i + 2 : end].strip()
            out.append(str(variables.get(key, "")))
            i = end + 2
            continue
        out.append(template[i])
        i += 1
    return "".join(out)
