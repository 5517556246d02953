from __future__ import annotations

import re
from dataclasses import dataclass

from website_monitor.config import ContentRule


EXPECTED_VALUE_PREVIEW_CHARS = 120


@dataclass(frozen=True)
class RuleOutcome:
    ok: bool
    reason: str | None = None


def truncate(s: str, max_len: int = EXPECTED_VALUE_PREVIEW_CHARS) -> str:
    s = str(s or "")
    return s if len(s) <= max_len else s[:max_len] + "..."


def evaluate_rule(rule: ContentRule, text: str) -> RuleOutcome:
    """
    Evaluate a content rule against decoded response text.

    Failure reasons quote (a truncated copy of) the expected value, never the body.
    """
    rule_type = str(rule.type or "").strip().lower()
    content = text or ""

    if rule_type == "contains":
        if rule.value not in content:
            return RuleOutcome(False, f"Content missing expected marker (contains): {truncate(rule.value)}")
        return RuleOutcome(True)

    if rule_type == "regex":
        try:
            matched = re.search(rule.value, content) is not None
        except re.error as exc:
            return RuleOutcome(False, f"Invalid regex: {exc}")
        if not matched:
            return RuleOutcome(False, f"Content missing expected marker (regex): {truncate(rule.value)}")
        return RuleOutcome(True)

    return RuleOutcome(False, f"Unknown content rule type: {rule.type}")
