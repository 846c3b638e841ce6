"""Run toolchain and docker commands, or record them for a dry run."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess


@dataclass
class CommandResult:
    command: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    streamed: bool = False


def format_command(command: Sequence[str]) -> str:
    """Shell-quoted rendering, suitable for copying into a terminal."""

    return " ".join(shlex.quote(str(part)) for part in command)


class CommandError(RuntimeError):
    """A checked command exited non-zero; ``returncode`` is the child's status."""

    def __init__(self, result: CommandResult):
        lines = [f"Command failed with exit code {result.returncode}: {format_command(result.command)}"]
        if result.streamed:
            lines.append("stdout/stderr already streamed above.")
        else:
            lines.append(f"stdout: {result.stdout}")
            lines.append(f"stderr: {result.stderr}")
        super().__init__("\n".join(lines))
        self.result = result

    @property
    def returncode(self) -> int:
        return self.result.returncode


class CommandRunner:
    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        """Run ``command`` to completion.

        ``env`` entries are added to the inherited environment. With
        ``stream`` the child writes straight to our stdout/stderr (compiler
        diagnostics, docker build progress); otherwise its text output is
        captured into the result. ``note`` labels the step in dry-run
        listings.
        """

        raise NotImplementedError


class SubprocessCommandRunner(CommandRunner):
    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        args = [str(part) for part in command]
        child_env: Dict[str, str] | None = None
        if env:
            child_env = {**os.environ, **env}
        process = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            env=child_env,
            capture_output=not stream,
            text=True,
            check=False,
        )
        result = CommandResult(
            command=args,
            returncode=process.returncode,
            stdout=process.stdout or "",
            stderr=process.stderr or "",
            streamed=stream,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    note: str | None = None
    stream: bool = False

    def describe(self, *, default_cwd: str | None = None) -> str:
        parts = ["[dry-run]"]
        if self.note:
            parts.append(self.note)
        cwd = self.cwd or default_cwd
        if cwd:
            parts.append(f"(cwd={cwd})")
        parts.append(format_command(self.command))
        return " ".join(parts)


class RecordingCommandRunner(CommandRunner):
    """Stands in for the real runner under ``--dry-run`` and in tests.

    Every command succeeds. Captured runs return ``stdout`` so a query such
    as ``docker info`` can be answered with canned text.
    """

    def __init__(self, *, stdout: str = "") -> None:
        self.commands: List[RecordedCommand] = []
        self._stdout = stdout

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        record = RecordedCommand(
            command=[str(part) for part in command],
            cwd=str(cwd) if cwd else None,
            env=dict(env or {}),
            note=note,
            stream=stream,
        )
        self.commands.append(record)
        return CommandResult(
            command=record.command,
            returncode=0,
            stdout="" if stream else self._stdout,
            streamed=stream,
        )

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            yield record.describe(default_cwd=default_cwd)


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "format_command",
]
