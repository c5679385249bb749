"""Exec-style subprocess runner for the git process backend.

Runs one child without a shell and with stdin closed. A child whose caller
times out or is cancelled is killed before the error propagates.
"""

import asyncio
import os
import subprocess
from pathlib import Path


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> tuple[str, str, int]:
    """Run ``args[0]`` with the remaining arguments and capture its output.

    Args:
        *args: Executable followed by its arguments
        cwd: Working directory (the parent's when None)
        check: Raise CalledProcessError on a non-zero exit status
        timeout: Seconds to wait before killing the child (None waits)
        env: Variables added to, or overriding, the parent environment

    Returns:
        Tuple of (stdout, stderr, return_code). Output is decoded as UTF-8
        with replacement for invalid bytes.

    Raises:
        subprocess.CalledProcessError: If check=True and command returns
            non-zero.
        TimeoutError: If timeout is exceeded. The process is killed
            before this exception is raised.
        FileNotFoundError: If the command executable is not found.
    """
    process_env = None
    if env:
        process_env = {**os.environ, **env}

    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        env=process_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except (TimeoutError, asyncio.CancelledError):
        process.kill()
        await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

    if check and process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode,
            args,
            stdout,
            stderr,
        )

    return stdout, stderr, process.returncode or 0
