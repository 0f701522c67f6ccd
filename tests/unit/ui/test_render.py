from __future__ import annotations

import io

import pytest

from agent_conductor.ui.render import create_renderer


class _TTY(io.StringIO):
    def isatty(self) -> bool:
        return True


def test_table_aligns_columns_and_marks_empty_cells() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    renderer.table(
        ["work item", "status", "commit"],
        [["item-1", "completed", "3f2a9c01d4"], ["item-22", "failed", None]],
        title="Jobs:",
    )

    assert stream.getvalue().splitlines() == [
        "",
        "Jobs:",
        "  work item  status     commit",
        "  ---------  ---------  ----------",
        "  item-1     completed  3f2a9c01d4",
        "  item-22    failed     -",
    ]


def test_empty_table_prints_nothing() -> None:
    stream = io.StringIO()

    create_renderer(stream=stream).table(["a", "b"], [], title="Nothing")

    assert stream.getvalue() == ""


def test_plain_stream_is_never_colored() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    renderer.ok("codex (1.0.0)")
    renderer.fail("gemini: not installed")
    renderer.warning("run aborted: interrupted")

    assert stream.getvalue().splitlines() == [
        "  OK  codex (1.0.0)",
        "  FAIL  gemini: not installed",
        "  Warning: run aborted: interrupted",
    ]


def test_tty_stream_is_colored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)
    stream = _TTY()

    create_renderer(stream=stream).ok("codex")

    assert stream.getvalue() == "  \033[32mOK\033[0m  codex\n"


@pytest.mark.parametrize("no_color_flag, env_value", [(True, ""), (False, "1")])
def test_color_can_be_disabled(
    monkeypatch: pytest.MonkeyPatch, no_color_flag: bool, env_value: str
) -> None:
    monkeypatch.setenv("NO_COLOR", env_value)
    stream = _TTY()

    create_renderer(no_color=no_color_flag, stream=stream).fail("codex")

    assert stream.getvalue() == "  FAIL  codex\n"


def test_kv_section_and_items() -> None:
    stream = io.StringIO()
    renderer = create_renderer(verbose=True, stream=stream)

    renderer.kv("Peak concurrency", 2)
    renderer.section("item-1 changed:")
    renderer.items(["src/app.py", "tests/test_app.py"])

    assert renderer.verbose is True
    assert stream.getvalue().splitlines() == [
        "Peak concurrency: 2",
        "",
        "item-1 changed:",
        "  - src/app.py",
        "  - tests/test_app.py",
    ]
