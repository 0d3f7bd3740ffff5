"""Run the external binaries used by the worker-only extractors.

``pdf:ocr`` needs Poppler's ``pdftoppm`` and ``tesseract``; ``video:frames``
needs ``ffmpeg``.  None of them suit serverless runtimes, so both
extractors are disabled by default.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from context_engine.errors import ExternalToolError

logger = logging.getLogger(__name__)


async def run_command(cmd: str, args: list[str], cwd: Path) -> str:
    """Run *cmd* with *args* in *cwd* and return its stdout.

    Raises
    ------
    ExternalToolError
        When the binary cannot be started or exits with a non-zero code.
    """
    logger.debug("Running %s %s", cmd, " ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ExternalToolError(f"Cannot start {cmd}: {exc}") from exc

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Timeouts cancel the await; the child must not outlive it.
        proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise ExternalToolError(f"{cmd} exited with code {proc.returncode}\n{detail}".strip())
    return stdout.decode("utf-8", errors="replace")
