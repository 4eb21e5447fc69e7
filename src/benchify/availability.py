"""Tool availability checks.

Before scheduling, every tool's program is launched once with its
existence-confirmation arguments.  Only a failure to start the program
makes a tool unavailable: a confirmation command that runs but exits
non-zero (many tools do for ``--version``) still proves the binary is
there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from benchify.config import ToolSpec
from benchify.errors import LaunchError, ToolUnavailable
from benchify.process import Invocation, Launcher

log = logging.getLogger("benchify")

# Seconds a confirmation command may run before it is killed.
CONFIRMATION_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class Availability:
    """Result of checking one tool."""

    tool: str
    available: bool
    install_instructions: str = ""
    reason: str = ""

    def as_error(self) -> ToolUnavailable:
        return ToolUnavailable(self.tool, self.install_instructions)


def confirmation_invocation(tool: ToolSpec, cwd: Path | None = None) -> Invocation:
    """Build the invocation that proves *tool* can be executed.

    Falls back to the bare program when no confirmation args are set.
    """
    args = tool.existence_confirmation or ()
    return Invocation(
        command=(tool.program, *args),
        cwd=cwd,
        timeout=CONFIRMATION_TIMEOUT_S,
    )


def check_tool(launcher: Launcher, tool: ToolSpec, cwd: Path | None = None) -> Availability:
    """Launch *tool*'s confirmation command once."""
    invocation = confirmation_invocation(tool, cwd)
    try:
        result = launcher.launch(invocation)
    except LaunchError as exc:
        log.warning(
            "Could not confirm that %s can be executed.\n\t"
            "Suggested install instructions:\n\t\t%s",
            tool.name,
            tool.install_instructions or "(none given)",
        )
        return Availability(
            tool=tool.name,
            available=False,
            install_instructions=tool.install_instructions,
            reason=str(exc),
        )

    if result.exit_code != 0:
        log.debug(
            "Confirmation of %s exited with %d; treating the tool as available",
            tool.name,
            result.exit_code,
        )
    return Availability(tool=tool.name, available=True)


def check_tools(
    launcher: Launcher,
    tools: Iterable[ToolSpec],
    cwd: Path | None = None,
) -> dict[str, Availability]:
    """Check every tool, keyed by tool name, in declaration order."""
    return {tool.name: check_tool(launcher, tool, cwd) for tool in tools}
