"""Tests for rsk.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from rsk.core.config import (
    DEFAULT_IMAGE,
    Config,
    PathsConfig,
    PublishConfig,
    SandboxConfig,
    UpstreamConfig,
    load_config,
    load_config_or_default,
)
from rsk.core.result import Err, Ok
from rsk.release.manifest import ALL_VARIANTS, Arch, Variant


class TestSandboxConfig:
    def test_defaults(self) -> None:
        config = SandboxConfig()
        assert config.image == DEFAULT_IMAGE
        assert config.runtime is None
        assert config.infra_retries == 0

    def test_timeout_per_arch(self) -> None:
        config = SandboxConfig(timeout_amd64=10, timeout_arm64=20)
        assert config.timeout_for(Arch.AMD64) == 10
        assert config.timeout_for(Arch.ARM64) == 20

    def test_frozen(self) -> None:
        config = SandboxConfig()
        with pytest.raises(AttributeError):
            config.image = "alpine"  # type: ignore[misc]


class TestEnvFallbacks:
    def test_repo_falls_back_to_github_repository(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_REPOSITORY", "acme/static-tools")
        assert PublishConfig().resolved_repo() == "acme/static-tools"
        assert PublishConfig(repo="me/mine").resolved_repo() == "me/mine"

    def test_repo_unknown(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
        assert PublishConfig().resolved_repo() is None

    def test_token_from_configured_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_TOKEN", "s3cret")
        assert UpstreamConfig(token_env="MY_TOKEN").token() == "s3cret"

    def test_empty_token_is_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "")
        assert UpstreamConfig().token() is None


class TestPathsConfig:
    def test_relative_paths_resolve_against_root(self, tmp_path: Path) -> None:
        assert PathsConfig().resolve(tmp_path, "dist") == tmp_path / "dist"

    def test_absolute_paths_are_kept(self, tmp_path: Path) -> None:
        paths = PathsConfig(build="/var/tmp/rsk-build")
        assert paths.resolve(tmp_path, "build") == Path("/var/tmp/rsk-build")


class TestFromDict:
    def test_empty_dict_gives_defaults(self) -> None:
        assert Config.from_dict({}) == Config()

    def test_full_config(self) -> None:
        config = Config.from_dict(
            {
                "sandbox": {
                    "image": "docker.io/library/ubuntu:24.04@sha256:abc",
                    "runtime": "docker",
                    "timeout_arm64": 7200,
                    "infra_retries": 1,
                },
                "publish": {"repo": "acme/rsk"},
                "upstream": {"api_url": "https://ghe.example/api/v3/", "timeout": 5},
                "retry": {"attempts": 5, "base_delay": 0.25},
                "release": {"workers": 2},
                "matrix": {"architectures": ["arm64"], "variants": ["default", "full"]},
                "paths": {"dist": "out"},
                "cache": {"version_ttl": 600},
            }
        )

        assert config.sandbox.runtime == "docker"
        assert config.sandbox.timeout_arm64 == 7200.0
        assert config.sandbox.infra_retries == 1
        assert config.publish.repo == "acme/rsk"
        assert config.upstream.api_url == "https://ghe.example/api/v3"
        assert config.retry.policy().attempts == 5
        assert config.retry.policy().base_delay == 0.25
        assert config.release.workers == 2
        assert config.matrix.architectures == (Arch.ARM64,)
        assert config.matrix.variants == (Variant.DEFAULT, Variant.FULL)
        assert config.paths.dist == "out"
        assert config.cache.version_ttl == 600.0

    def test_default_matrix_is_full(self) -> None:
        assert Config.from_dict({}).matrix.variants == ALL_VARIANTS

    def test_unknown_runtime(self) -> None:
        with pytest.raises(ValueError, match="runtime"):
            Config.from_dict({"sandbox": {"runtime": "lxc"}})

    @pytest.mark.parametrize(
        "data",
        [{"release": {"workers": 0}}, {"sandbox": {"infra_retries": -1}}],
    )
    def test_out_of_range_counts(self, data: dict[str, object]) -> None:
        with pytest.raises(ValueError, match="workers"):
            Config.from_dict(data)

    def test_bool_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="attempts"):
            Config.from_dict({"retry": {"attempts": True}})


class TestLoadConfig:
    def test_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rsk.toml"
        path.write_text('[publish]\nrepo = "acme/rsk"\n', encoding="utf-8")

        result = load_config(path)
        assert isinstance(result, Ok)
        assert result.value.publish.repo == "acme/rsk"

    def test_missing_file(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "nope.toml")
        assert isinstance(result, Err)
        assert "not found" in result.error.message

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "rsk.toml"
        path.write_text("[sandbox\n", encoding="utf-8")

        result = load_config(path)
        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message
        assert result.error.path == path

    def test_bad_matrix_value(self, tmp_path: Path) -> None:
        path = tmp_path / "rsk.toml"
        path.write_text('[matrix]\narchitectures = ["riscv64"]\n', encoding="utf-8")

        result = load_config(path)
        assert isinstance(result, Err)
        assert "Invalid config structure" in result.error.message

    def test_or_default_when_missing(self, tmp_path: Path) -> None:
        assert load_config_or_default(tmp_path / "rsk.toml") == Ok(Config())

    def test_or_default_still_reports_broken_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rsk.toml"
        path.write_text("not toml at all = = =", encoding="utf-8")
        assert isinstance(load_config_or_default(path), Err)
