import io

import pytest

from linecraft import Terminal, TerminalCapability, VirtualClock, ProgressSession


class FakeTerminal(Terminal):
    """Terminal over in-memory streams with a fixed size"""

    def __init__(self, interactive=True, width=80, capability=TerminalCapability.ADVANCED):
        super().__init__(stdout=io.StringIO(), stderr=io.StringIO())
        self.interactive = interactive
        self.width = width
        self._capability = capability

    def is_interactive(self):
        return self.interactive

    def columns(self):
        return self.width if self.interactive else 0

    def capability(self):
        return self._capability

    @property
    def out(self):
        return self.stdout.getvalue()

    @property
    def err(self):
        return self.stderr.getvalue()


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def session(terminal, clock):
    session = ProgressSession(terminal, clock=clock)
    yield session
    session.end()
