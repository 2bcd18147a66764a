"""Tests for rsk.services.sandbox module."""

from __future__ import annotations

from pathlib import Path

import pytest

from rsk.core.result import Err, Ok, Result
from rsk.output.console import MockConsole
from rsk.platform.process import TIMEOUT_RETURNCODE, Completed, ProcessError
from rsk.release.errors import ProvisioningError, SandboxTimeout
from rsk.services.sandbox import ContainerSandbox, Mount, MountMode


class _FakeRuntime:
    """Records runtime commands and tracks which containers exist."""

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.containers: set[str] = set()
        self.fail: dict[str, ProcessError] = {}
        self.start: Result[Completed, ProcessError] = Ok(Completed(0, "ok", ""))
        self.start_raises: Exception | None = None

    def run(
        self, cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd, timeout
        self.commands.append(cmd)
        verb = cmd[1]
        if verb in self.fail:
            return Err(self.fail[verb])
        if verb == "create":
            self.containers.add(cmd[cmd.index("--name") + 1])
        if verb == "rm":
            self.containers.discard(cmd[-1])
        return Ok("")

    def capture(
        self, cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[Completed, ProcessError]:
        del cwd, timeout
        self.commands.append(cmd)
        if self.start_raises is not None:
            raise self.start_raises
        return self.start

    def verbs(self) -> list[str]:
        return [c[1] for c in self.commands]


def _sandbox(runtime: _FakeRuntime, tmp_path: Path) -> ContainerSandbox:
    return ContainerSandbox(
        cwd=tmp_path,
        runtime="podman",
        console=MockConsole(),
        run_fn=runtime.run,
        capture_fn=runtime.capture,
    )


def _mounts(tmp_path: Path) -> list[Mount]:
    return [
        Mount(tmp_path / "scripts", "/workspace/scripts", MountMode.READ_ONLY),
        Mount(tmp_path / "build", "/workspace/build", MountMode.READ_WRITE),
    ]


def _err(stderr: str, returncode: int = 125) -> ProcessError:
    return ProcessError(("podman",), returncode, "", stderr)


class TestLifecycle:
    def test_success(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()

        result = _sandbox(runtime, tmp_path).run(
            "ubuntu:24.04",
            _mounts(tmp_path),
            {"B": "2", "A": "1"},
            ["bash", "-c", "true"],
            platform="linux/arm64",
        )

        assert isinstance(result, Ok)
        assert result.value.ok
        assert runtime.verbs() == ["pull", "create", "start", "rm"]
        assert runtime.containers == set()

    def test_create_arguments(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()

        _sandbox(runtime, tmp_path).run(
            "ubuntu:24.04",
            _mounts(tmp_path),
            {"B": "2", "A": "1"},
            ["bash", "-c", "true"],
            platform="linux/arm64",
        )

        create = runtime.commands[1]
        assert create[create.index("--platform") + 1] == "linux/arm64"
        assert f"{tmp_path / 'scripts'}:/workspace/scripts:ro,z" in create
        assert f"{tmp_path / 'build'}:/workspace/build:rw,z" in create
        # Sorted env keeps commands reproducible.
        assert create.index("A=1") < create.index("B=2")
        assert create[-4:] == ["ubuntu:24.04", "bash", "-c", "true"]

    def test_each_run_uses_a_new_container(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        sandbox = _sandbox(runtime, tmp_path)

        sandbox.run("img", [], {}, ["true"])
        sandbox.run("img", [], {}, ["true"])

        names = [c[c.index("--name") + 1] for c in runtime.commands if c[1] == "create"]
        assert len(set(names)) == 2

    def test_on_started_fires_before_command(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        seen: list[list[str]] = []

        _sandbox(runtime, tmp_path).run(
            "img", [], {}, ["true"], on_started=lambda: seen.extend(runtime.commands)
        )

        assert [c[1] for c in seen] == ["pull", "create"]


class TestTeardown:
    def test_nonzero_exit_is_a_result_and_tears_down(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start = Ok(Completed(2, "", "make: *** [all] Error 2"))

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["make"])

        assert isinstance(result, Ok)
        assert result.value.exit_code == 2
        assert not result.value.ok
        assert runtime.containers == set()

    def test_timeout_tears_down(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start = Err(_err("Command timed out", TIMEOUT_RETURNCODE))

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["make"], timeout=5)

        assert result == Err(SandboxTimeout(seconds=5))
        assert runtime.verbs()[-1] == "rm"
        assert runtime.containers == set()

    def test_crash_mid_run_still_tears_down(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start_raises = KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            _sandbox(runtime, tmp_path).run("img", [], {}, ["make"])

        assert runtime.verbs()[-1] == "rm"
        assert runtime.containers == set()

    def test_failing_on_started_still_tears_down(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()

        def boom() -> None:
            raise RuntimeError("observer failed")

        with pytest.raises(RuntimeError):
            _sandbox(runtime, tmp_path).run("img", [], {}, ["make"], on_started=boom)

        assert runtime.containers == set()

    def test_failed_removal_is_recorded(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.fail["rm"] = _err("container is busy")
        sandbox = _sandbox(runtime, tmp_path)

        result = sandbox.run("img", [], {}, ["true"])

        assert isinstance(result, Ok)
        assert len(sandbox.teardown_failures) == 1


class TestProvisioning:
    def test_pull_failure(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.fail["pull"] = _err("manifest unknown")

        result = _sandbox(runtime, tmp_path).run("img:missing", [], {}, ["true"])

        assert isinstance(result, Err)
        assert isinstance(result.error, ProvisioningError)
        assert result.error.stage == "pull"
        assert runtime.verbs() == ["pull"]

    def test_create_failure_cleans_up(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.fail["create"] = _err("invalid mount")

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["true"])

        assert isinstance(result, Err)
        assert isinstance(result.error, ProvisioningError)
        assert result.error.stage == "create"
        assert runtime.verbs() == ["pull", "create", "rm"]

    def test_start_failure_is_provisioning(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start = Err(_err("OCI runtime error", -1))

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["true"])

        assert isinstance(result, Err)
        assert isinstance(result.error, ProvisioningError)
        assert result.error.stage == "start"
        assert runtime.containers == set()

    def test_engine_exit_status_is_provisioning(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start = Ok(
            Completed(125, "", "Error: unable to start container: exec format error")
        )

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["true"], platform="linux/arm64")

        assert isinstance(result, Err)
        assert isinstance(result.error, ProvisioningError)
        assert result.error.stage == "start"
        assert "exec format error" in result.error.detail
        assert runtime.containers == set()

    def test_engine_failure_without_stderr(self, tmp_path: Path) -> None:
        runtime = _FakeRuntime()
        runtime.start = Ok(Completed(125, "", ""))

        result = _sandbox(runtime, tmp_path).run("img", [], {}, ["true"])

        assert result == Err(ProvisioningError(stage="start", detail="podman start exited 125"))

    def test_no_runtime(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from rsk.services import sandbox as sandbox_mod

        monkeypatch.setattr(sandbox_mod, "which", lambda name: None)
        sandbox = ContainerSandbox(cwd=tmp_path)

        result = sandbox.run("img", [], {}, ["true"])

        assert isinstance(result, Err)
        assert isinstance(result.error, ProvisioningError)
        assert result.error.stage == "runtime"
