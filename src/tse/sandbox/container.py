"""Sandbox backed by a long-lived Docker container.

The host workspace directory is either bind-mounted at ``/workspace``
(default; the files stay inspectable from the host) or copied into an
isolated container filesystem and copied back out only when the caller
asks to keep the workspace.
"""

from __future__ import annotations

import base64
import io
import logging
import posixpath
import shlex
import shutil
import tarfile
from pathlib import Path
from typing import Any, Mapping

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..config import ExecutorSettings
from ..errors import CommandTimeoutError, SandboxError
from ..telemetry import emit_event
from .base import CommandResult, Sandbox
from .frames import decode_stream

LOGGER = logging.getLogger(__name__)

CONTAINER_WORKSPACE = "/workspace"
TIMEOUT_EXIT_CODE = 124
_READ_CHUNK = 4096
_GONE_STATUSES = {404, 409}


class ContainerSandbox(Sandbox):
    """Run tutorial steps inside a disposable container."""

    def __init__(
        self,
        run_id: str | None = None,
        *,
        settings: ExecutorSettings | None = None,
        base_dir: Path | str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(run_id, settings=settings, base_dir=base_dir)
        self._client = client
        self._container: Any = None

    @property
    def command_root(self) -> str:
        return CONTAINER_WORKSPACE

    @property
    def image(self) -> str:
        return self.settings.container_image

    @property
    def bind_mounted(self) -> bool:
        return self.settings.use_volume_mount

    # ------------------------------------------------------------------ lifecycle
    def initialize(self) -> None:
        try:
            self.workspace_root.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise SandboxError(
                f"Unable to create workspace {self.workspace_root}: {exc}",
                details={"workspace": str(self.workspace_root)},
            ) from exc

        client = self._docker()
        self._ensure_image(client)

        options: dict[str, Any] = {
            "command": ["tail", "-f", "/dev/null"],
            "detach": True,
            "working_dir": CONTAINER_WORKSPACE,
            "labels": {"tse.run-id": self.run_id},
        }
        if self.bind_mounted:
            options["volumes"] = {
                str(self.workspace_root): {"bind": CONTAINER_WORKSPACE, "mode": "rw"}
            }
        try:
            self._container = client.containers.run(self.image, **options)
        except DockerException as exc:
            raise SandboxError(
                f"Failed to start container from image {self.image!r}: {exc}",
                details={"image": self.image},
            ) from exc

        if not self.bind_mounted:
            self._copy_in()
        LOGGER.info(
            "Started container %s for workspace %s (%s)",
            getattr(self._container, "short_id", self._container.id),
            self.workspace_root,
            "bind mount" if self.bind_mounted else "isolated",
        )

    def _docker(self) -> Any:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as exc:
                raise SandboxError(
                    f"Docker is not available: {exc}. Start the Docker daemon or use the host sandbox."
                ) from exc
        return self._client

    def _ensure_image(self, client: Any) -> None:
        try:
            client.images.get(self.image)
            return
        except ImageNotFound:
            pass
        except APIError as exc:
            raise SandboxError(f"Unable to inspect image {self.image!r}: {exc}") from exc

        dockerfile = self.settings.dockerfile
        if dockerfile is None or not Path(dockerfile).is_file():
            context = str(Path(dockerfile).parent) if dockerfile is not None else "."
            raise SandboxError(
                f"Container image {self.image!r} not found. Build it first:\n"
                f"  docker build -t {self.image} {context}",
                details={"image": self.image, "remediation": f"docker build -t {self.image} {context}"},
            )

        path = Path(dockerfile)
        LOGGER.info("Building image %s from %s", self.image, path)
        try:
            client.images.build(path=str(path.parent), dockerfile=path.name, tag=self.image, rm=True)
        except DockerException as exc:
            raise SandboxError(
                f"Failed to build image {self.image!r} from {path}: {exc}",
                details={"image": self.image, "dockerfile": str(path)},
            ) from exc

    def cleanup(self, preserve: bool = False) -> None:
        container, self._container = self._container, None
        if container is not None:
            if preserve and not self.bind_mounted:
                self._copy_out(container)
            self._quietly(container.stop, "stop", timeout=5)
            self._quietly(container.remove, "remove", force=True)

        removed = False
        if preserve:
            LOGGER.info("Preserving workspace at %s", self.workspace_root)
        elif self.workspace_root.exists():
            try:
                shutil.rmtree(self.workspace_root)
                removed = True
            except OSError as exc:
                LOGGER.warning("Failed to remove workspace %s: %s", self.workspace_root, exc)
        emit_event(
            "sandbox.cleanup",
            backend="container",
            workspace=self.workspace_root,
            preserved=preserve,
            removed=removed,
        )

    @staticmethod
    def _quietly(action: Any, label: str, **kwargs: Any) -> None:
        try:
            action(**kwargs)
        except APIError as exc:
            if getattr(exc, "status_code", None) in _GONE_STATUSES or isinstance(exc, NotFound):
                LOGGER.debug("Container already gone during %s: %s", label, exc)
                return
            LOGGER.warning("Container %s failed: %s", label, exc)
        except DockerException as exc:
            LOGGER.warning("Container %s failed: %s", label, exc)

    # ------------------------------------------------------------------ commands
    def run(
        self,
        command: str,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        workdir = self.container_path(working_dir) if working_dir else CONTAINER_WORKSPACE
        limit = self.effective_timeout(timeout)
        script = f"mkdir -p {shlex.quote(workdir)} && cd {shlex.quote(workdir)} && {command}"
        argv = ["sh", "-c", script]
        if limit is not None:
            argv = ["timeout", "-k", "5", f"{limit:g}", *argv]

        result = self._exec(argv, env=env)
        if limit is not None and result.exit_code == TIMEOUT_EXIT_CODE:
            raise CommandTimeoutError(command, limit)
        return result

    def _exec(self, argv: list[str], *, env: Mapping[str, str] | None = None) -> CommandResult:
        container = self._require_container()
        api = self._docker().api
        try:
            exec_id = api.exec_create(
                container.id,
                argv,
                stdout=True,
                stderr=True,
                tty=False,
                workdir=CONTAINER_WORKSPACE,
                environment=dict(env) if env else None,
            )["Id"]
            sock = api.exec_start(exec_id, socket=True)
        except DockerException as exc:
            raise SandboxError(f"Container exec failed: {exc}") from exc

        try:
            stdout, stderr = decode_stream(_iter_socket(sock), max_bytes=self.settings.max_output_bytes)
        finally:
            close = getattr(sock, "close", None)
            if close is not None:
                close()

        try:
            exit_code = api.exec_inspect(exec_id).get("ExitCode")
        except DockerException as exc:
            raise SandboxError(f"Unable to read exec exit code: {exc}") from exc
        return CommandResult(
            exit_code=int(exit_code) if exit_code is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def _require_container(self) -> Any:
        if self._container is None:
            raise SandboxError("Container sandbox has not been initialized")
        return self._container

    def container_path(self, path: str) -> str:
        """Map a workspace-relative path to its location inside the container."""
        if path.startswith("/"):
            return path
        return posixpath.normpath(posixpath.join(CONTAINER_WORKSPACE, path))

    # ------------------------------------------------------------------ files
    def read_file(self, path: str) -> str:
        if self.bind_mounted:
            return self.resolve_path(path).read_bytes().decode("utf-8")
        target = self.container_path(path)
        result = self._exec(["cat", "--", target])
        if not result.ok:
            raise FileNotFoundError(f"Cannot read {target} in container: {result.stderr.strip()}")
        return result.stdout

    def write_file(self, path: str, content: str) -> None:
        if self.bind_mounted:
            target = self.resolve_path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content.encode("utf-8"))
            return
        target = self.container_path(path)
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        script = (
            f"mkdir -p {shlex.quote(posixpath.dirname(target))} && "
            f"printf %s {shlex.quote(encoded)} | base64 -d > {shlex.quote(target)}"
        )
        result = self._exec(["sh", "-c", script])
        if not result.ok:
            raise OSError(f"Cannot write {target} in container: {result.stderr.strip()}")

    def file_exists(self, path: str) -> bool:
        if self.bind_mounted:
            return self.resolve_path(path).exists()
        return self._exec(["test", "-e", self.container_path(path)]).ok

    # ------------------------------------------------------------------ isolated copies
    def _copy_in(self) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            for entry in sorted(self.workspace_root.rglob("*")):
                archive.add(str(entry), arcname=entry.relative_to(self.workspace_root).as_posix(), recursive=False)
        try:
            self._container.put_archive(CONTAINER_WORKSPACE, buffer.getvalue())
        except DockerException as exc:
            raise SandboxError(f"Failed to copy workspace into container: {exc}") from exc

    def _copy_out(self, container: Any) -> None:
        try:
            stream, _stat = container.get_archive(f"{CONTAINER_WORKSPACE}/.")
            payload = b"".join(stream)
        except DockerException as exc:
            LOGGER.warning("Failed to copy workspace out of container: %s", exc)
            return
        prefix = posixpath.basename(CONTAINER_WORKSPACE) + "/"
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r") as archive:
                members = []
                for member in archive.getmembers():
                    name = member.name
                    if name.startswith("./"):
                        name = name[2:]
                    if name.startswith(prefix):
                        name = name[len(prefix):]
                    if not name or name in {".", posixpath.basename(CONTAINER_WORKSPACE)}:
                        continue
                    member.name = name
                    members.append(member)
                archive.extractall(self.workspace_root, members=members, filter="data")
        except (tarfile.TarError, OSError) as exc:
            LOGGER.warning("Failed to unpack workspace archive: %s", exc)


def _iter_socket(sock: Any):
    """Yield raw chunks from an exec socket until EOF."""
    reader = getattr(sock, "recv", None) or getattr(sock, "read")
    while True:
        chunk = reader(_READ_CHUNK)
        if not chunk:
            return
        yield chunk


__all__ = ["CONTAINER_WORKSPACE", "ContainerSandbox"]
