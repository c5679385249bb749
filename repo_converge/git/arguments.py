"""Git command-line argument building with log-safe rendering.

A command line is an ordered list of tagged arguments. Each argument is
plain, quoted or sensitive, and the list has two projections:

    - render(): the text as it would be typed into a shell
    - render_redacted(): the same text with every sensitive argument
      replaced by ``(hidden)``, safe for log sinks

The process backend never executes the rendered string. It passes argv()
to asyncio.create_subprocess_exec, so quoting only matters for display.

Example:
    >>> args = GitArguments("clone")
    >>> args.append_quoted("https://example.com/repo.git")
    >>> args.append_sensitive("Authorization: Basic c2VjcmV0")
    >>> args.render_redacted()
    'clone "https://example.com/repo.git" (hidden)'
"""

import shlex
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

HIDDEN = "(hidden)"


@dataclass(frozen=True)
class PlainArgument:
    text: str


@dataclass(frozen=True)
class QuotedArgument:
    text: str


@dataclass(frozen=True)
class SensitiveArgument:
    """Quoted argument that must never reach a log in literal form."""

    text: str


CommandArgument = PlainArgument | QuotedArgument | SensitiveArgument


def quote(text: str) -> str:
    """Wrap text in double quotes, backslash-escaping embedded quotes."""
    return '"' + text.replace('"', '\\"') + '"'


def render_argument(argument: CommandArgument) -> str:
    if isinstance(argument, PlainArgument):
        return argument.text
    if isinstance(argument, QuotedArgument | SensitiveArgument):
        return quote(argument.text)
    raise TypeError(f"Unsupported argument type: {type(argument).__name__}")


def redact_argument(argument: CommandArgument) -> str:
    if isinstance(argument, SensitiveArgument):
        return HIDDEN
    return render_argument(argument)


class GitArguments:
    """Ordered, append-only list of git command-line arguments."""

    def __init__(self, initial_arguments: str | None = None) -> None:
        """Initialize the argument list.

        Args:
            initial_arguments: Pre-formed argument text, kept verbatim as a
                single plain argument
        """
        self._arguments: list[CommandArgument] = []
        if initial_arguments is not None:
            self.append(initial_arguments)

    def append(self, text: str | None) -> None:
        self._arguments.append(PlainArgument(text or ""))

    def append_quoted(self, text: str | None) -> None:
        self._arguments.append(QuotedArgument(text or ""))

    def append_sensitive(self, text: str | None) -> None:
        self._arguments.append(SensitiveArgument(text or ""))

    def extend(self, texts: Iterable[str]) -> None:
        for text in texts:
            self.append(text)

    def render(self) -> str:
        return " ".join(render_argument(a) for a in self._arguments)

    def render_redacted(self) -> str:
        return " ".join(redact_argument(a) for a in self._arguments)

    def argv(self) -> list[str]:
        """Argument vector for exec-style invocation (no shell).

        Plain arguments are split into words the way a shell would split
        the rendered text; quoted and sensitive arguments stay one word each.
        """
        words: list[str] = []
        for argument in self._arguments:
            if isinstance(argument, PlainArgument):
                words.extend(shlex.split(argument.text))
            else:
                words.append(argument.text)
        return words

    def sensitive_values(self) -> list[str]:
        """Literal text of every sensitive argument, for scrubbing output."""
        return [a.text for a in self._arguments if isinstance(a, SensitiveArgument) and a.text]

    def __iter__(self) -> Iterator[CommandArgument]:
        return iter(self._arguments)

    def __len__(self) -> int:
        return len(self._arguments)

    def __str__(self) -> str:
        return self.render_redacted()

    def __repr__(self) -> str:
        return f"GitArguments({self.render_redacted()!r})"
