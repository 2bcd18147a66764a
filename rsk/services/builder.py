"""Best-effort builds of one matrix cell inside a sandbox.

A helper that fails to build does not fail the job here: the builder only
reports what happened per component. Whether the result is good enough is
decided by the packager's required-components check.
"""

from __future__ import annotations

import shlex
import shutil
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from rsk.core.config import SandboxConfig
from rsk.core.result import Err, Ok, Result
from rsk.output.console import ConsoleProtocol
from rsk.release.errors import BuildCommandFailed, JobFailure, OracleError
from rsk.release.manifest import components_for, get_tool_spec
from rsk.release.model import JobKey
from rsk.services.components import BuildPlan, BuildStep, build_order
from rsk.services.sandbox import Mount, MountMode, Sandbox

__all__ = [
    "ComponentStatus",
    "ComponentReport",
    "BuildResult",
    "Builder",
    "SandboxBuilder",
    "render_plan",
    "render_script",
    "job_subtree",
]

CONTAINER_SCRIPTS = "/workspace/scripts"
CONTAINER_BUILD = "/workspace/build"
SETUP_SCRIPT = f"{CONTAINER_SCRIPTS}/container/setup-build-env.sh"

_OUTPUT_TAIL_LINES = 40


class ComponentStatus(StrEnum):
    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ComponentReport:
    name: str
    status: ComponentStatus
    reason: str | None = None
    log: Path | None = None


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Per-component outcome of one build; never all-or-nothing."""

    key: JobKey
    install_dir: Path
    components: tuple[ComponentReport, ...]

    @property
    def built(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.components if c.status == ComponentStatus.BUILT)

    @property
    def problems(self) -> tuple[ComponentReport, ...]:
        return tuple(c for c in self.components if c.status != ComponentStatus.BUILT)


class Builder(Protocol):
    def build(
        self,
        key: JobKey,
        *,
        source_ref: str,
        on_started: Callable[[], None] | None = None,
    ) -> Result[BuildResult, JobFailure]: ...


def job_subtree(build_dir: Path, key: JobKey, libc: str = "static") -> Path:
    """Host directory owned exclusively by one job.

    Keyed by tool+arch (+libc when not static) and then variant, so jobs
    running concurrently never write into each other's trees.
    """
    base = f"{key.tool}-{key.arch}" if libc == "static" else f"{key.tool}-{key.arch}-{libc}"
    return build_dir / base / str(key.variant)


def plan_for(key: JobKey) -> BuildPlan:
    spec = get_tool_spec(key.tool)
    if spec is None:
        raise KeyError(f"unknown tool: {key.tool}")
    return build_order(components_for(spec, key.variant))


# Brings DIR to TAG: an existing checkout is fetched, forced and cleaned,
# anything else is cloned afresh. Three attempts.
_CHECKOUT_FN = r"""rsk_checkout() {
  local url=$1 dir=$2 tag=$3 attempt
  for attempt in 1 2 3; do
    if [ -d "$dir/.git" ] &&
      git -C "$dir" fetch --quiet --depth 1 --force origin "+refs/tags/$tag:refs/tags/$tag" &&
      git -C "$dir" checkout --quiet --force --detach "refs/tags/$tag" &&
      git -C "$dir" clean -ffdxq; then
      return 0
    fi
    rm -rf "$dir"
    if git clone --quiet --depth 1 --branch "$tag" "$url" "$dir"; then
      return 0
    fi
    rm -rf "$dir"
    echo "checkout of $url at $tag failed (attempt $attempt/3)" >&2
    if [ "$attempt" -lt 3 ]; then sleep "${RSK_CHECKOUT_RETRY_DELAY:-5}"; fi
  done
  return 1
}
export -f rsk_checkout"""


def _step_script(step: BuildStep, ref: str | None, env: Mapping[str, str]) -> list[str]:
    comp = step.component
    name = comp.name
    status = f'"$REPORT_DIR/{name}.status"'
    src = f"$SRC_DIR/{comp.checkout}"

    lines = [f"# --- {name} ({type(comp).__name__})"]
    body: list[str] = []
    if comp.source is None:
        if ref is None:
            lines.append(f'echo "skipped:no release tag" >{status}')
            return lines
        body.append(f'rsk_checkout {shlex.quote(comp.repo)} "{src}" {shlex.quote(ref)}')
    body.extend(comp.build(src, env))
    script = shlex.quote("\n".join(body))

    # A separate bash honours -e; a subshell tested by `if` would not.
    run_block = [
        f'  if bash -eo pipefail -c {script} >"$REPORT_DIR/{name}.log" 2>&1; then',
        f"    echo built >{status}",
        "  else",
        f'    echo "failed:exit $?" >{status}',
        "  fi",
    ]

    if not comp.requires:
        lines.append("if true; then")
    else:
        checks = " && ".join(
            f'[ "$(cat "$REPORT_DIR/{dep}.status" 2>/dev/null)" = built ]' for dep in comp.requires
        )
        lines.append(f"if {checks}; then")
    lines.extend(run_block)
    if comp.requires:
        lines += ["else", f'  echo "skipped:requires {",".join(comp.requires)}" >{status}']
    lines.append("fi")
    return lines


def render_plan(
    plan: BuildPlan,
    *,
    source_ref: str,
    helper_refs: Mapping[str, str] | None = None,
    env: dict[str, str] | None = None,
    build_root: str = CONTAINER_BUILD,
) -> str:
    """Shell script building ``plan`` under ``build_root``.

    The main tree is checked out at ``source_ref``; helpers use their pinned
    ``ref`` or, failing that, the tag found in ``helper_refs``. A helper with
    neither is reported as skipped.
    """
    refs = helper_refs or {}
    lines = [
        "set -uo pipefail",
        f"export INSTALL_DIR={build_root}/install",
        f"export PREFIX={build_root}/prefix",
        f"export SRC_DIR={build_root}/src",
        f"export REPORT_DIR={build_root}/report",
        'export PKG_CONFIG_PATH="$PREFIX/lib/pkgconfig:$PREFIX/lib64/pkgconfig"',
        'mkdir -p "$INSTALL_DIR/bin" "$PREFIX" "$SRC_DIR" "$REPORT_DIR"',
        f"if [ -f {SETUP_SCRIPT} ]; then . {SETUP_SCRIPT} || exit 2; fi",
        _CHECKOUT_FN,
    ]
    for step in plan.steps:
        comp = step.component
        ref = source_ref if step.main else comp.ref or refs.get(comp.name)
        lines.extend(_step_script(step, ref, env or {}))
    lines.append("exit 0")
    return "\n".join(lines) + "\n"


def render_script(
    key: JobKey, *, source_ref: str, helper_refs: Mapping[str, str] | None = None
) -> str:
    """Shell script run by ``bash -c`` inside the sandbox for ``key``."""
    return render_plan(
        plan_for(key),
        source_ref=source_ref,
        helper_refs=helper_refs,
        env={"ARCH": str(key.arch), "VARIANT": str(key.variant), "TOOL": key.tool},
    )


def _tail(text: str, lines: int = _OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.splitlines()[-lines:])


def read_reports(report_dir: Path, names: tuple[str, ...]) -> tuple[ComponentReport, ...]:
    reports: list[ComponentReport] = []
    for name in names:
        log = report_dir / f"{name}.log"
        status_path = report_dir / f"{name}.status"
        try:
            raw = status_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            reports.append(ComponentReport(name, ComponentStatus.FAILED, "no status reported"))
            continue

        kind, _, reason = raw.partition(":")
        log_path = log if log.exists() else None
        match kind:
            case "built":
                reports.append(ComponentReport(name, ComponentStatus.BUILT, log=log_path))
            case "skipped":
                reports.append(
                    ComponentReport(name, ComponentStatus.SKIPPED, reason or None, log_path)
                )
            case _:
                reports.append(
                    ComponentReport(name, ComponentStatus.FAILED, reason or raw, log_path)
                )
    return tuple(reports)


class SandboxBuilder:
    """Runs ``render_script`` for a job in a fresh sandbox and collects the reports.

    ``resolve_tag`` maps a helper's ``owner/repo`` to its latest stable tag.
    Answers are shared by every job of the run; a helper whose tag cannot be
    resolved is skipped rather than built from an unreleased branch.
    """

    def __init__(
        self,
        *,
        sandbox: Sandbox,
        sandbox_config: SandboxConfig,
        scripts_dir: Path,
        build_dir: Path,
        resolve_tag: Callable[[str], Result[str, OracleError]] | None = None,
        libc: str = "static",
        console: ConsoleProtocol | None = None,
    ) -> None:
        self._sandbox = sandbox
        self._config = sandbox_config
        self._scripts_dir = scripts_dir
        self._build_dir = build_dir
        self._resolve_tag = resolve_tag
        self._libc = libc
        self._console = console
        self._tags: dict[str, str | None] = {}
        self._tags_lock = threading.Lock()

    def job_dir(self, key: JobKey) -> Path:
        return job_subtree(self._build_dir, key, self._libc)

    def helper_refs(self, key: JobKey) -> dict[str, str]:
        refs: dict[str, str] = {}
        for step in plan_for(key).steps:
            comp = step.component
            if step.main or comp.source is not None or comp.ref is not None:
                continue
            tag = self._lookup_tag(comp.upstream) if comp.upstream else None
            if tag is not None:
                refs[comp.name] = tag
        return refs

    def _lookup_tag(self, upstream: str) -> str | None:
        # Held across the lookup so concurrent jobs ask each upstream once.
        with self._tags_lock:
            if upstream in self._tags:
                return self._tags[upstream]
            tag: str | None = None
            if self._resolve_tag is not None:
                result = self._resolve_tag(upstream)
                if isinstance(result, Ok):
                    tag = result.value
                elif self._console is not None:
                    self._console.warning(f"helper tag lookup failed: {result.error.message}")
            self._tags[upstream] = tag
            return tag

    def build(
        self,
        key: JobKey,
        *,
        source_ref: str,
        on_started: Callable[[], None] | None = None,
    ) -> Result[BuildResult, JobFailure]:
        job_dir = self.job_dir(key)
        # Outputs of a previous attempt must not satisfy this attempt's checks.
        for stale in ("install", "report"):
            if (job_dir / stale).exists():
                shutil.rmtree(job_dir / stale)
        job_dir.mkdir(parents=True, exist_ok=True)

        script = render_script(key, source_ref=source_ref, helper_refs=self.helper_refs(key))
        mounts = (
            Mount(self._scripts_dir, CONTAINER_SCRIPTS, MountMode.READ_ONLY),
            Mount(job_dir, CONTAINER_BUILD, MountMode.READ_WRITE),
        )
        env = {
            "TOOL": key.tool,
            "VERSION": source_ref,
            "ARCH": str(key.arch),
            "GOARCH": str(key.arch),
            "VARIANT": str(key.variant),
            "LIBC": self._libc,
        }
        result = self._sandbox.run(
            self._config.image,
            mounts,
            env,
            ["bash", "-c", script],
            timeout=self._config.timeout_for(key.arch),
            platform=f"linux/{key.arch}",
            on_started=on_started,
        )
        if isinstance(result, Err):
            return result

        run = result.value
        if not run.ok:
            return Err(
                BuildCommandFailed(
                    exit_code=run.exit_code,
                    output_tail=_tail(run.stderr or run.stdout),
                )
            )

        reports = read_reports(job_dir / "report", plan_for(key).names)
        build = BuildResult(key=key, install_dir=job_dir / "install", components=reports)
        if self._console is not None:
            for problem in build.problems:
                self._console.warning(
                    f"{key}: {problem.name} {problem.status}"
                    + (f" ({problem.reason})" if problem.reason else "")
                )
        return Ok(build)
