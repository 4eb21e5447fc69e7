"""Interpolation of test information into runner templates.

Four markers are recognised::

    {NAME}  name of the test
    {TAG}   the runner's current tag
    {FILE}  the test file
    {...}   extra arguments provided by the test

In an argument-vector template a token that is exactly ``{...}`` is
replaced by zero or more tokens, one per extra argument.  In a shell
command the arguments are quoted individually and joined by spaces.
Anything else that merely looks like a marker (``{OTHER}``) is left
alone.

Substitution is a single regex pass, so the result never depends on the
order markers appear in and substituted text is never re-scanned.
"""

from __future__ import annotations

import enum
import re
import shlex
from dataclasses import dataclass
from typing import Sequence

from benchify.errors import InterpolationError


class Interpolant(enum.Enum):
    """The closed set of markers understood by benchify."""

    NAME = "{NAME}"
    TAG = "{TAG}"
    FILE = "{FILE}"
    EXTRA_ARGS = "{...}"

    @classmethod
    def from_marker(cls, marker: str) -> Interpolant:
        return _BY_MARKER[marker]


_BY_MARKER = {i.value: i for i in Interpolant}

# Quoted forms of the arguments marker come first so the shell resolver
# sees them before the bare marker.
_QUOTED_ARGS = ('"{...}"', "'{...}'")
_MARKER_RE = re.compile(
    "|".join(re.escape(m) for m in (*_QUOTED_ARGS, *(i.value for i in Interpolant)))
)


@dataclass(frozen=True)
class InterpolationContext:
    """Values available to a template for one (test, tag)."""

    name: str
    tag: str
    file: str | None = None
    extra_args: tuple[str, ...] = ()


def _value(marker: Interpolant, ctx: InterpolationContext, *, shell: bool) -> str:
    if marker is Interpolant.NAME:
        return ctx.name
    if marker is Interpolant.TAG:
        return ctx.tag
    if marker is Interpolant.FILE:
        if ctx.file is None:
            raise InterpolationError(
                f"Test {ctx.name!r} has no file but the template uses {Interpolant.FILE.value}"
            )
        return ctx.file
    if shell:
        return " ".join(shlex.quote(a) for a in ctx.extra_args)
    return " ".join(ctx.extra_args)


def _substitute(text: str, ctx: InterpolationContext, *, shell: bool) -> str:
    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token in _QUOTED_ARGS:
            if shell:
                return shlex.quote(" ".join(ctx.extra_args))
            # Outside a shell the quotes are literal characters.
            quote = token[0]
            return f"{quote}{' '.join(ctx.extra_args)}{quote}"
        return _value(Interpolant.from_marker(token), ctx, shell=shell)

    return _MARKER_RE.sub(replace, text)


def resolve_shell(template: str, ctx: InterpolationContext) -> str:
    """Interpolate *ctx* into a shell command template.

    Raises:
        InterpolationError: If the template uses ``{FILE}`` and the
            test has no file.
    """
    return _substitute(template, ctx, shell=True)


def resolve_argv(template: Sequence[str], ctx: InterpolationContext) -> list[str]:
    """Interpolate *ctx* into an argument-vector template.

    A token equal to ``{...}`` expands to the extra arguments as separate
    elements (possibly none).  Every other token maps to exactly one
    output element.

    Raises:
        InterpolationError: If a token uses ``{FILE}`` and the test has
            no file.
    """
    resolved: list[str] = []
    for token in template:
        if token == Interpolant.EXTRA_ARGS.value:
            resolved.extend(ctx.extra_args)
        else:
            resolved.append(_substitute(token, ctx, shell=False))
    return resolved


def template_needs_file(template: str | Sequence[str] | None) -> bool:
    """True if the template references the ``{FILE}`` marker."""
    if template is None:
        return False
    if isinstance(template, str):
        return Interpolant.FILE.value in template
    return any(Interpolant.FILE.value in token for token in template)
