"""Release notes preamble: runtime spec versions and toolchain versions.

Node operators want to know which native runtime versions ship with a
release and which compiler produced it, before reading the change list.
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Mapping, Sequence

from release_announcer.errors import ConfigError, RangeResolutionFailure
from release_announcer.logging_config import get_logger

logger = get_logger(__name__)

_TOOLCHAIN_TIMEOUT_SECONDS = 30.0
_NUMBER_RE = re.compile(r"[0-9]+")


def spec_version(source: str) -> int:
    """Extract the runtime spec version from a runtime source file.

    Uses the last line mentioning ``spec_version``.

    Raises:
        RangeResolutionFailure: If no spec_version line carries a number
    """
    lines = [line for line in source.splitlines() if "spec_version" in line]
    if lines:
        match = _NUMBER_RE.search(lines[-1])
        if match is not None:
            return int(match.group(0))
    raise RangeResolutionFailure("No spec_version found in runtime source")


def toolchain_version(command: Sequence[str]) -> str:
    """Run a version command and return its first output line.

    Raises:
        ConfigError: If the command cannot be run or fails
    """
    try:
        proc = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            check=False,
            timeout=_TOOLCHAIN_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ConfigError(f"Could not run {' '.join(command)}: {exc}") from exc
    if proc.returncode != 0:
        raise ConfigError(
            f"{' '.join(command)} failed (exit {proc.returncode}): {proc.stderr.strip()}"
        )
    output = proc.stdout.strip()
    version = output.splitlines()[0] if output else ""
    logger.debug("toolchain_version", command=" ".join(command), version=version)
    return version


def render_preamble(
    runtime_versions: Mapping[str, int],
    toolchains: Sequence[str] = (),
) -> str:
    """Render the preamble text.

    Args:
        runtime_versions: Runtime display name -> spec version
        toolchains: Toolchain version strings

    Returns:
        Preamble text, or "" when there is nothing to show
    """
    blocks = [f"{name} native runtime: {version}" for name, version in runtime_versions.items()]
    if toolchains:
        blocks.append(
            "\n".join(
                [
                    "This release was built with the following toolchain versions. "
                    "Other versions may work.",
                    *(f"- {version}" for version in toolchains),
                ]
            )
        )
    return "\n\n".join(blocks)
