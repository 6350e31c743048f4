from __future__ import annotations

import asyncio

from conftest import FakePage, evaluate_returning
from qarunner.core.select_checks import (
    _SELECTABLE_JS,
    assert_select_options,
    assert_select_selectable,
    compare_options,
)
from qarunner.models.test_case import SelectOption

SIZES = [SelectOption("s", "Small"), SelectOption("m", "Medium"), SelectOption("l", "Large")]


def test_compare_ignores_order():
    check = compare_options(list(reversed(SIZES)), SIZES)
    assert check.passed
    assert check.to_dict() == {"pass": True, "message": "All options match"}


def test_compare_reports_missing_and_extra():
    actual = [SelectOption("s", "Small"), SelectOption("xl", "Extra Large")]
    check = compare_options(actual, SIZES)
    assert not check.passed
    assert check.missing == [SelectOption("m", "Medium"), SelectOption("l", "Large")]
    assert check.extra == [SelectOption("xl", "Extra Large")]
    assert check.message.startswith("Mismatch. Missing: ")
    assert '"xl"' in check.message


def test_compare_treats_label_change_as_mismatch():
    check = compare_options([SelectOption("s", "Tiny")], [SelectOption("s", "Small")])
    assert not check.passed


def test_assert_options_reads_page():
    page = FakePage(evaluate_returning([
        {"value": "l", "text": "Large"},
        {"value": "s", "text": " Small "},
        {"value": "m", "text": "Medium"},
    ]))
    check = asyncio.run(assert_select_options(page, "#size", SIZES))
    assert check.passed
    assert '"#size"' in page.calls[0][1]["expression"]


def test_assert_options_missing_select():
    page = FakePage(evaluate_returning(None))
    check = asyncio.run(assert_select_options(page, "#size", SIZES))
    assert not check.passed
    assert check.message == "Selector not found: #size"


def test_selectable_passes():
    page = FakePage(evaluate_returning({"ok": True, "checked": ["s", "m", "l"]}))
    check = asyncio.run(assert_select_selectable(page, "#size"))
    assert check.passed
    assert check.to_dict()["checkedValues"] == ["s", "m", "l"]


def test_selectable_names_the_failing_value():
    page = FakePage(evaluate_returning({"error": "Selection failed for l", "failedValue": "l",
                                        "checked": ["s", "m", "l"]}))
    check = asyncio.run(assert_select_selectable(page, "#size"))
    assert not check.passed
    assert check.message == "Selection failed for l"


def test_selectable_script_restores_value_on_every_exit():
    failure_branch = _SELECTABLE_JS.split("if (sel.value !== v) {", 1)[1].split("}", 1)[0]
    assert "sel.value = original;" in failure_branch
