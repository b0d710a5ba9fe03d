"""
Console output for shadowtree commands.
"""

import sys
from typing import Optional, TextIO


class Output:
    """Prints user-facing messages; carries the verbose flag through calls."""

    def __init__(
        self,
        verbose: bool = False,
        stream: Optional[TextIO] = None,
        err_stream: Optional[TextIO] = None
    ):
        self.verbose = verbose
        self._stream = stream
        self._err_stream = err_stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    @property
    def err_stream(self) -> TextIO:
        return self._err_stream if self._err_stream is not None else sys.stderr

    def info(self, message: str) -> None:
        print(message, file=self.stream)

    def success(self, message: str) -> None:
        print(f"✅ {message}", file=self.stream)

    def warning(self, message: str) -> None:
        print(f"⚠️  {message}", file=self.stream)

    def error(self, message: str) -> None:
        print(message, file=self.err_stream)

    def debug(self, message: str) -> None:
        if self.verbose:
            print(f"  {message}", file=self.stream)

    def command(self, cmd: str) -> None:
        """Print a follow-up command for the user to run."""
        print(f"   {cmd}", file=self.stream)

    def section(self, title: str) -> None:
        print(f"\n{title}", file=self.stream)

    def list(self, items, indent: str = '  ') -> None:
        for item in items:
            print(f"{indent}• {item}", file=self.stream)
