import io

import pytest

from hotloop import HotloopConfig, new_session
from hotloop.hotloop_console import Console


@pytest.fixture(autouse=True)
def fresh_session():
    # Every test starts on a thread session that has not been set up
    new_session()
    yield
    new_session()


class ScriptedConsole(Console):
    """Console whose confirmation prompt answers from a list; None means EOF."""

    def __init__(self, answers=(), on_prompt=None, config=None):
        super().__init__(config or HotloopConfig(), out=io.StringIO(), err=io.StringIO())
        self.answers = list(answers)
        self.on_prompt = on_prompt
        self.prompts = 0

    def readline(self, prompt):
        self.prompts += 1
        if self.on_prompt is not None:
            self.on_prompt(self.prompts)
        if not self.answers:
            return None
        return self.answers.pop(0)

    @property
    def stdout_text(self):
        return self._out.getvalue()

    @property
    def stderr_text(self):
        return self._err.getvalue()
