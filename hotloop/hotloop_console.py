import sys
from typing import Any, Dict, Optional, TextIO

import pystache

from hotloop.hotloop_config import HotloopConfig


def read_input(prompt: str) -> str:
    """Prompt and read one raw line from stdin; '' means EOF."""
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def format_ms(ms: float) -> str:
    """Milliseconds with three decimals and a space as thousands separator: '1 234.500'."""
    return f"{ms:,.3f}".replace(",", " ")


def shorten(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + f"... [{len(text) - limit} more chars]"


class Console:
    """Line-oriented console used for the loop transcript and the confirmation prompt."""

    def __init__(self, config: Optional[HotloopConfig] = None,
                 out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.config = config or HotloopConfig()
        self._out = out
        self._err = err
        # No HTML escaping; this is terminal text
        self._renderer = pystache.Renderer(escape=lambda u: u)

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err or sys.stderr

    def render(self, template: str, **context: Any) -> str:
        ctx: Dict[str, Any] = {
            "rule": "-" * self.config.rule_width,
            "heavy_rule": "=" * self.config.rule_width,
            "sentinel": self.config.exit_sentinel,
        }
        ctx.update(context)
        return self._renderer.render(template, ctx)

    def print(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    def error(self, text: str = "") -> None:
        # Flush stdout first so the two channels interleave in order
        self.out.flush()
        print(text, file=self.err, flush=True)

    def readline(self, prompt: str) -> Optional[str]:
        """Read one line; None on EOF."""
        raw = read_input(prompt)
        if raw == "":
            return None
        return raw.rstrip("\r\n")

    def confirm_continue(self) -> bool:
        """Block until the user hits enter. False when the exit sentinel (or EOF) was entered."""
        line = self.readline(self.render(self.config.prompt_template))
        if line is None:
            self.print()
            return False
        return line.strip() != self.config.exit_sentinel
