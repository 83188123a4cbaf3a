"""
Child process lifecycle: spawn, stream wiring, exit detection and teardown.
"""

import asyncio
import os
import signal
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import psutil

from .errors import BridgeError, SpawnFailure
from .framing import LineFramer, pump_lines
from .logging import LogEvent, StructuredLogger

# Seconds the readers may keep draining after the child is reaped
OUTPUT_FLUSH_TIMEOUT = 0.5
# Seconds between returncode checks while waiting for the child to be reaped
EXIT_POLL_INTERVAL = 0.05


@dataclass
class ProcessExit:
    """How the child process ended."""

    code: Optional[int]
    signal: Optional[str]

    @classmethod
    def from_returncode(cls, returncode: int) -> "ProcessExit":
        # asyncio reports death by signal N as returncode -N
        if returncode is not None and returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            return cls(code=None, signal=name)
        return cls(code=returncode, signal=None)


def build_environment(overrides: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, str]:
    """Host environment overlaid with overrides; a None override unsets the key."""
    env = dict(os.environ)
    for key, value in (overrides or {}).items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = str(value)
    return env


class ProcessSupervisor:
    """
    Owns one child process and its three pipes.

    Output is framed into lines and handed to ``on_stdout_line`` and
    ``on_stderr_line``. Spawn failures and reader faults go to ``on_error``;
    ``on_exit`` fires as soon as the child is reaped. Readers get up to
    ``output_flush_timeout`` seconds to deliver trailing lines first, then are
    cancelled, since orphaned descendants may hold the pipes open forever.
    Nothing is restarted.

    With ``kill_process_tree`` on POSIX the child leads its own session, so
    descendants stay reachable through the process group after it dies.
    """

    def __init__(
        self,
        executable: str,
        args: Sequence[str] = (),
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, Optional[str]]] = None,
        on_stdout_line: Optional[Callable[[str], None]] = None,
        on_stderr_line: Optional[Callable[[str], None]] = None,
        on_exit: Optional[Callable[[ProcessExit], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        logger: Optional[StructuredLogger] = None,
        kill_process_tree: bool = True,
        output_flush_timeout: float = OUTPUT_FLUSH_TIMEOUT,
    ):
        self.executable = executable
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env or {})
        self.kill_process_tree = kill_process_tree
        self.output_flush_timeout = output_flush_timeout
        self._own_group = kill_process_tree and os.name == "posix"

        self._on_stdout_line = on_stdout_line or (lambda line: None)
        self._on_stderr_line = on_stderr_line or (lambda line: None)
        self._on_exit = on_exit or (lambda exit_info: None)
        self._on_error = on_error or (lambda error: None)
        self._logger = logger or StructuredLogger()

        self.process: Optional[asyncio.subprocess.Process] = None
        self.exit_info: Optional[ProcessExit] = None

        self._stdout_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None
        self._descendants: List[psutil.Process] = []

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self.process.stdin if self.process else None

    async def spawn(self) -> bool:
        """
        Spawn the child with piped stdin/stdout/stderr.

        Returns:
            True once the process handle exists. On failure the SpawnFailure
            is delivered to on_error and False is returned; nothing is raised.
        """
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.executable,
                *self.args,
                cwd=self.cwd,
                env=build_environment(self.env),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=self._own_group,
            )
        except (OSError, ValueError) as e:
            # ValueError covers NUL bytes and '=' in env names, cwd or argv
            failure = SpawnFailure(
                f"Failed to spawn {self.executable}: {e}",
                os_error=e if isinstance(e, OSError) else None,
            )
            failure.__cause__ = e
            self._logger.failure(LogEvent.PROCESS_SPAWN_FAILED, failure)
            self._on_error(failure)
            return False

        self._logger.process_spawn(self.process.pid, self.executable)

        self._stdout_task = asyncio.create_task(
            pump_lines(self.process.stdout, LineFramer(self._on_stdout_line))
        )
        self._stderr_task = asyncio.create_task(
            pump_lines(self.process.stderr, LineFramer(self._on_stderr_line))
        )
        self._exit_task = asyncio.create_task(self._watch_exit())
        return True

    async def _watch_exit(self):
        """Wait for the child to exit, give the readers a moment, then report."""
        returncode = await self._wait_for_returncode()
        self.exit_info = ProcessExit.from_returncode(returncode)

        readers = [task for task in (self._stdout_task, self._stderr_task) if task]
        done, pending = set(), set()
        if readers:
            done, pending = await asyncio.wait(readers, timeout=self.output_flush_timeout)
        if pending:
            self._logger.debug(
                LogEvent.PROCESS_EXIT,
                "Output still open after exit; descendants may hold the pipes",
            )
            for task in pending:
                task.cancel()
            # Let each framer flush its partial line before exit is reported
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is None:
                continue
            if not isinstance(error, BridgeError):
                wrapped = BridgeError(f"Error reading child output: {error}")
                wrapped.__cause__ = error
                error = wrapped
            self._on_error(error)

        self._logger.process_exit(self.exit_info.code, self.exit_info.signal)
        self._on_exit(self.exit_info)

    async def _wait_for_returncode(self) -> int:
        # Process.wait() also waits for every pipe to close, which an orphaned
        # descendant can put off forever. returncode is set when the child is reaped.
        waiter = asyncio.ensure_future(self.process.wait())
        try:
            while self.process.returncode is None and not waiter.done():
                await asyncio.wait({waiter}, timeout=EXIT_POLL_INTERVAL)
        finally:
            if not waiter.done():
                waiter.cancel()
        if self.process.returncode is not None:
            return self.process.returncode
        return waiter.result()

    def _collect_descendants(self) -> List[psutil.Process]:
        """
        Live descendants of the child.

        While the child runs they are found through the process tree. Once it
        is gone its orphans are reparented, so they are found through the
        process group the child led instead.
        """
        if not self.kill_process_tree or self.process is None:
            return []

        found: Dict[int, psutil.Process] = {}
        if self.process.returncode is None:
            try:
                for child in psutil.Process(self.process.pid).children(recursive=True):
                    found[child.pid] = child
            except psutil.Error:
                pass

        if self._own_group:
            group = self.process.pid
            for proc in psutil.process_iter():
                if proc.pid in found or proc.pid == group:
                    continue
                try:
                    if os.getpgid(proc.pid) == group:
                        found[proc.pid] = proc
                except OSError:
                    continue
        return list(found.values())

    def terminate(self) -> bool:
        """
        Close the child's stdin and send it SIGTERM. With kill_process_tree,
        its descendants are signalled too, even when the child already exited.

        Returns:
            True if a live child process was signalled
        """
        process = self.process
        if process is None:
            return False

        self._descendants = self._collect_descendants()

        signalled = False
        if process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                process.terminate()
                signalled = True
            except ProcessLookupError:
                pass

        for child in self._descendants:
            try:
                child.terminate()
            except psutil.Error:
                pass
        return signalled

    def kill(self):
        """SIGKILL the child and any descendant still alive."""
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            self._logger.warn(LogEvent.PROCESS_KILL, "Child process killed")

        for child in self._descendants:
            try:
                child.kill()
            except psutil.Error:
                pass

    async def shutdown(self, grace: float = 2.0):
        """Terminate, wait up to ``grace`` seconds, then escalate to SIGKILL."""
        self.terminate()
        if self._exit_task is None:
            return

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(asyncio.shield(self._exit_task), timeout=grace)
        except asyncio.TimeoutError:
            self.kill()
            await self._exit_task

        if self._descendants:
            _, alive = await loop.run_in_executor(
                None, lambda: psutil.wait_procs(self._descendants, timeout=grace)
            )
            for child in alive:
                try:
                    child.kill()
                except psutil.Error:
                    pass
