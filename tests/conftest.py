import pytest
from rich.console import Console

from ollachat import fmt


@pytest.fixture(autouse=True)
def _plain_consoles(monkeypatch):
    """Keep fmt output free of ANSI codes regardless of FORCE_COLOR etc."""
    monkeypatch.setattr(
        fmt,
        "_console",
        Console(stderr=True, force_terminal=False, no_color=True, width=120),
    )
    monkeypatch.setattr(
        fmt, "_out", Console(force_terminal=False, no_color=True, width=120)
    )
