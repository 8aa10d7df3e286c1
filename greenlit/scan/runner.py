"""Scanner runner — invokes the external greenlight binary as a subprocess."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from greenlit.config import settings
from greenlit.errors import ScannerInvocationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScannerOutput:
    """What the scanner printed, and how it exited."""

    stdout: str
    stderr: str = ""
    exit_code: int = 0


class ScannerRunner:
    """Runs greenlight with a hard timeout.

    greenlight exits non-zero when it finds issues, so a non-zero exit code
    with output on stdout is a normal result, not a failure.
    """

    def __init__(self, binary: str | None = None, timeout: float | None = None) -> None:
        self.binary = binary or settings.scanner_path
        self.timeout = timeout if timeout is not None else settings.scanner_timeout

    async def scan_ipa(self, ipa_path: str) -> ScannerOutput:
        return await self.run("ipa", ipa_path, "--format", "json")

    async def preflight(self, project_path: str, ipa_path: str | None = None) -> ScannerOutput:
        """Full project scan, optionally including a built .ipa."""
        args = ["preflight", project_path, "--format", "json"]
        if ipa_path:
            args += ["--ipa", ipa_path]
        return await self.run(*args)

    async def codescan(self, project_path: str) -> ScannerOutput:
        return await self.run("codescan", project_path, "--format", "json")

    async def privacy(self, project_path: str) -> ScannerOutput:
        return await self.run("privacy", project_path, "--format", "json")

    async def search_guidelines(self, query: str) -> ScannerOutput:
        # Search results are passed through as plain text.
        return await self.run("guidelines", "search", query)

    async def run(self, *args: str) -> ScannerOutput:
        logger.info("Running %s %s", self.binary, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ScannerInvocationFailed(
                f"Could not start scanner {self.binary!r}: {exc}"
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ScannerInvocationFailed(
                f"Scanner timed out after {self.timeout}s"
            ) from exc

        output = ScannerOutput(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=proc.returncode or 0,
        )
        if output.exit_code != 0 and not output.stdout.strip():
            raise ScannerInvocationFailed(
                f"Scanner exited with code {output.exit_code} and no output",
                stderr=output.stderr[-2000:],
            )
        logger.info(
            "Scanner finished (exit=%d, %d bytes)", output.exit_code, len(output.stdout)
        )
        return output
