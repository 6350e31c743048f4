"""Assertions over <select> elements."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from qarunner.core.page_ops import eval_on_page
from qarunner.models.test_case import SelectOption


@dataclass
class SelectCheck:
    passed: bool
    message: str
    missing: list[SelectOption] = field(default_factory=list)
    extra: list[SelectOption] = field(default_factory=list)
    checked: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {"pass": self.passed, "message": self.message}
        if self.missing or self.extra:
            d["missing"] = [o.to_dict() for o in self.missing]
            d["extra"] = [o.to_dict() for o in self.extra]
        if self.checked:
            d["checkedValues"] = list(self.checked)
        return d


def compare_options(actual: list[SelectOption], expected: list[SelectOption]) -> SelectCheck:
    """Order-independent comparison of (value, text) pairs."""
    actual_set = set(actual)
    expected_set = set(expected)
    missing = [o for o in expected if o not in actual_set]
    extra = [o for o in actual if o not in expected_set]
    if missing or extra:
        return SelectCheck(
            passed=False,
            message=(
                f"Mismatch. Missing: {json.dumps([o.to_dict() for o in missing])} "
                f"Extra: {json.dumps([o.to_dict() for o in extra])}"
            ),
            missing=missing,
            extra=extra,
        )
    return SelectCheck(passed=True, message="All options match")


async def read_options(session, selector: str) -> list[SelectOption] | None:
    """Return the element's options, or None when the selector matches nothing."""
    data = await eval_on_page(session, f"""(function() {{
        const sel = document.querySelector({json.dumps(selector)});
        if (!sel || !sel.options) return null;
        return Array.from(sel.options).map(o => ({{ value: o.value, text: (o.textContent || '').trim() }}));
    }})()""")
    if data is None:
        return None
    return [SelectOption.from_dict(o) for o in data]


async def assert_select_options(session, selector: str, expected: list[SelectOption]) -> SelectCheck:
    actual = await read_options(session, selector)
    if actual is None:
        return SelectCheck(passed=False, message=f"Selector not found: {selector}")
    return compare_options(actual, expected)


_SELECTABLE_JS = """(function(selector) {
    const sel = document.querySelector(selector);
    if (!sel || !sel.options) return { error: 'Selector not found: ' + selector };
    const original = sel.value;
    const values = Array.from(sel.options).map(o => o.value);
    for (const v of values) {
        sel.value = v;
        sel.dispatchEvent(new Event('change', { bubbles: true }));
        if (sel.value !== v) {
            sel.value = original;
            return { error: 'Selection failed for ' + v, failedValue: v, checked: values };
        }
    }
    sel.value = original;
    return { ok: true, checked: values };
})"""


async def assert_select_selectable(session, selector: str) -> SelectCheck:
    """Select every option in turn and confirm the element's value follows."""
    result = await eval_on_page(session, f"{_SELECTABLE_JS}({json.dumps(selector)})")
    if not isinstance(result, dict):
        return SelectCheck(passed=False, message=f"Unexpected result for {selector}")
    if result.get("error"):
        return SelectCheck(passed=False, message=result["error"], checked=result.get("checked") or [])
    return SelectCheck(passed=True, message="All options selectable", checked=result.get("checked") or [])
