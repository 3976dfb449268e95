"""Best-effort discovery and teardown of processes a command left running.

Tutorials routinely start dev servers with ``npm run dev &`` and move on. The
shell that launched them exits immediately, so the sandbox has to find the
survivors afterwards: by the ports they listen on and by whether their
working directory or command line points into the workspace. Every method
here logs failures and returns; nothing raises.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import psutil

from ..config import DEFAULT_WELL_KNOWN_PORTS

LOGGER = logging.getLogger(__name__)

_BACKGROUND_OPERATOR = re.compile(r"(?<![&>|])&(?![&>])")
_BACKGROUND_WRAPPER = re.compile(r"(?:^|[\s;&|(])(?:nohup|setsid|disown)(?:\s|$)")

_PORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"--port(?:=|\s+)(\d{2,5})\b"),
    re.compile(r"(?:^|\s)-p\s*(\d{2,5})\b"),
    re.compile(r"\bPORT=(\d{2,5})\b"),
    re.compile(r"(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\]|(?<![\w.:])):(\d{2,5})\b"),
    re.compile(r"\bhttp\.server\s+(\d{2,5})\b"),
    re.compile(r"\brunserver\s+(?:[\w.]+:)?(\d{2,5})\b"),
)

_DEV_SERVER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(?:npm|yarn|pnpm|bun)\s+(?:run\s+)?(?:dev|start|serve|preview)\b"),
    re.compile(r"\bnpx\s+(?:vite|next|serve|http-server)\b"),
    re.compile(r"\b(?:vite|next\s+(?:dev|start)|ng\s+serve|nodemon)\b"),
    re.compile(r"\bnode\s+\S+\.(?:js|mjs|cjs)\b"),
    re.compile(r"\bflask\s+run\b"),
    re.compile(r"\b(?:uvicorn|gunicorn|hypercorn)\b"),
    re.compile(r"\bmanage\.py\s+runserver\b"),
    re.compile(r"\bhttp\.server\b"),
    re.compile(r"\brails\s+(?:server|s)\b"),
)


@dataclass(frozen=True, slots=True)
class ProcessHandle:
    """A process discovered after a background command."""

    pid: int
    command: str
    port: int | None = None
    create_time: float | None = None


class BackgroundProcessTracker:
    """Track detached processes spawned by workspace commands."""

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        well_known_ports: Sequence[int] = DEFAULT_WELL_KNOWN_PORTS,
        grace_period: float = 5.0,
    ) -> None:
        self.workspace_root = str(Path(workspace_root))
        self.well_known_ports = tuple(well_known_ports)
        self.grace_period = grace_period
        self._handles: dict[int, ProcessHandle] = {}

    @property
    def handles(self) -> tuple[ProcessHandle, ...]:
        return tuple(self._handles.values())

    # ------------------------------------------------------------------ heuristics
    @staticmethod
    def is_background(command: str) -> bool:
        """Return True when ``command`` detaches work from the calling shell."""
        return bool(_BACKGROUND_OPERATOR.search(command) or _BACKGROUND_WRAPPER.search(command))

    @staticmethod
    def extract_ports(command: str) -> list[int]:
        ports: list[int] = []
        for pattern in _PORT_PATTERNS:
            for match in pattern.finditer(command):
                port = int(match.group(1))
                if 0 < port < 65536 and port not in ports:
                    ports.append(port)
        return ports

    def infer_ports(self, command: str) -> list[int]:
        """Explicit ports when present, else well-known ports for dev-server commands."""
        explicit = self.extract_ports(command)
        if explicit:
            return explicit
        if any(pattern.search(command) for pattern in _DEV_SERVER_PATTERNS):
            return list(self.well_known_ports)
        return []

    # ------------------------------------------------------------------ discovery
    def track(self, command: str, cwd: Path | str | None = None) -> list[ProcessHandle]:
        """Discover processes belonging to ``command`` and remember them."""
        found: dict[int, ProcessHandle] = {}
        explicit = set(self.extract_ports(command))
        for port in self.infer_ports(command):
            for pid in self._listening_pids(port):
                proc = self._process(pid)
                if proc is None or self._is_protected(proc):
                    continue
                # Inferred well-known ports may belong to unrelated servers.
                if port not in explicit and not self._references_workspace(proc, self.workspace_root):
                    continue
                found.setdefault(pid, self._handle_for(proc, port=port))

        # The process scan stays scoped to the workspace even when ``cwd`` points elsewhere.
        for proc in self._iter_processes():
            if proc.pid in found or proc.pid in self._handles or self._is_protected(proc):
                continue
            if self._references_workspace(proc, self.workspace_root):
                found[proc.pid] = self._handle_for(proc)

        handles = list(found.values())
        for handle in handles:
            self._handles[handle.pid] = handle
        if handles:
            LOGGER.info(
                "Tracking %d background process(es) for %r in %s: %s",
                len(handles),
                command,
                cwd or self.workspace_root,
                ", ".join(str(handle.pid) for handle in handles),
            )
        else:
            LOGGER.debug("No background processes discovered for %r", command)
        return handles

    # ------------------------------------------------------------------ teardown
    def kill(self, handle: ProcessHandle) -> bool:
        """Terminate ``handle`` and its children; escalate to SIGKILL after the grace window."""
        self._handles.pop(handle.pid, None)
        try:
            proc = psutil.Process(handle.pid)
            if handle.create_time is not None and proc.create_time() != handle.create_time:
                LOGGER.debug("PID %d was reused; skipping", handle.pid)
                return True
            targets = proc.children(recursive=True) + [proc]
        except psutil.NoSuchProcess:
            return True
        except psutil.Error as exc:
            LOGGER.warning("Unable to inspect background process %d: %s", handle.pid, exc)
            return False
        return self._terminate(targets)

    def kill_all(self) -> None:
        for handle in list(self._handles.values()):
            self.kill(handle)

    def sweep(self, path: Path | str | None = None) -> int:
        """Kill every remaining process whose cwd or command line references ``path``."""
        scope = str(path) if path is not None else self.workspace_root
        victims = [
            proc
            for proc in self._iter_processes()
            if not self._is_protected(proc) and self._references_workspace(proc, scope)
        ]
        if not victims:
            return 0
        LOGGER.info("Sweeping %d leftover process(es) under %s", len(victims), scope)
        killed = 0
        for proc in victims:
            try:
                targets = proc.children(recursive=True) + [proc]
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as exc:
                LOGGER.warning("Unable to inspect leftover process %d: %s", proc.pid, exc)
                continue
            if self._terminate(targets):
                killed += 1
        return killed

    # ------------------------------------------------------------------ internals
    def _terminate(self, targets: Iterable[psutil.Process]) -> bool:
        procs = list(targets)
        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as exc:
                LOGGER.warning("Failed to send SIGTERM to %d: %s", proc.pid, exc)
        try:
            _gone, alive = psutil.wait_procs(procs, timeout=self.grace_period)
        except psutil.Error as exc:
            LOGGER.warning("Waiting for background processes failed: %s", exc)
            alive = procs
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as exc:
                LOGGER.warning("Failed to kill %d: %s", proc.pid, exc)
        if not alive:
            return True
        try:
            _gone, survivors = psutil.wait_procs(alive, timeout=1.0)
        except psutil.Error:
            return False
        for proc in survivors:
            LOGGER.warning("Process %d survived SIGKILL", proc.pid)
        return not survivors

    def _listening_pids(self, port: int) -> list[int]:
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.Error as exc:
            LOGGER.debug("Cannot list sockets to look up port %d: %s", port, exc)
            return []
        pids: list[int] = []
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or conn.pid is None or not conn.laddr:
                continue
            if conn.laddr.port == port and conn.pid not in pids:
                pids.append(conn.pid)
        return pids

    @staticmethod
    def _process(pid: int) -> psutil.Process | None:
        try:
            return psutil.Process(pid)
        except psutil.Error:
            return None

    @staticmethod
    def _iter_processes() -> Iterator[psutil.Process]:
        try:
            yield from psutil.process_iter(["pid", "cwd", "cmdline"])
        except psutil.Error as exc:
            LOGGER.warning("Process scan failed: %s", exc)

    @staticmethod
    def _references_workspace(proc: psutil.Process, scope: str) -> bool:
        if not scope:
            return False
        info = getattr(proc, "info", None) or {}
        try:
            cwd = info.get("cwd") if "cwd" in info else proc.cwd()
            cmdline = info.get("cmdline") if "cmdline" in info else proc.cmdline()
        except psutil.Error:
            return False
        if cwd and (cwd == scope or cwd.startswith(scope.rstrip(os.sep) + os.sep)):
            return True
        return any(scope in str(part) for part in cmdline or ())

    @staticmethod
    def _is_protected(proc: psutil.Process) -> bool:
        """Never signal ourselves or our ancestors."""
        own = os.getpid()
        if proc.pid == own:
            return True
        try:
            return proc.pid in {parent.pid for parent in psutil.Process(own).parents()}
        except psutil.Error:
            return False

    @staticmethod
    def _handle_for(proc: psutil.Process, *, port: int | None = None) -> ProcessHandle:
        try:
            command = " ".join(proc.cmdline())
            created = proc.create_time()
        except psutil.Error:
            command, created = "", None
        return ProcessHandle(pid=proc.pid, command=command, port=port, create_time=created)


__all__ = ["BackgroundProcessTracker", "ProcessHandle"]
