# -*- coding: utf-8 -*-
"""
runner 端到端测试（tmp_path 上的真实目录）

目录结构:
    upstream/1.0/lib/copy.js
    upstream/2.0/lib/copy.js
    downstream/src/copy.js
    downstream/overrides.json   # manifest 位于 downstream 根目录内
"""

import json
import logging

import pytest
from conftest import file_hash

from platform_override.config import OverrideConfig
from platform_override.errors import FileReadError
from platform_override.manifest import Manifest, read_manifest, write_manifest
from platform_override.override import CopyOverride
from platform_override.reconcile import UpgradeStatus
from platform_override.runner import build_context, run_upgrade_pass, run_validation_pass

COPY_V1 = "export const v = 1;\n"
COPY_V2 = "export const v = 2;\n"


@pytest.fixture(autouse=True)
def root_logger(monkeypatch):
    """隔离 build_context 对根 logger 的配置"""
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    return root


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def workspace(tmp_path):
    _write(tmp_path / "upstream" / "1.0" / "lib" / "copy.js", COPY_V1)
    _write(tmp_path / "upstream" / "2.0" / "lib" / "copy.js", COPY_V2)
    _write(tmp_path / "downstream" / "src" / "copy.js", COPY_V1)
    manifest = Manifest(
        [
            CopyOverride(
                file="src/copy.js",
                base_file="lib/copy.js",
                base_version="1.0",
                base_hash=file_hash(COPY_V1),
                issue=12,
            )
        ],
        base_version="1.0",
    )
    write_manifest(tmp_path / "downstream" / "overrides.json", manifest)
    return tmp_path


def _config(workspace, version="1.0", **kwargs) -> OverrideConfig:
    return OverrideConfig(
        manifest_path=str(workspace / "downstream" / "overrides.json"),
        override_root=str(workspace / "downstream"),
        upstream_root=str(workspace / "upstream"),
        upstream_version=version,
        **kwargs,
    )


class TestValidationPass:
    """校验入口"""

    @pytest.mark.asyncio
    async def test_clean_workspace(self, workspace):
        report = await run_validation_pass(_config(workspace))
        # manifest 文件本身不算未登记文件
        assert report.ok
        assert report.manifest_outcomes == []

    @pytest.mark.asyncio
    async def test_untracked_and_stale(self, workspace):
        _write(workspace / "downstream" / "src" / "stray.js", "stray\n")
        report = await run_validation_pass(_config(workspace, version="2.0"))
        assert report.stale_overrides() == ["src/copy.js"]
        assert [o.override_name for o in report.manifest_outcomes] == ["src/stray.js"]

    def test_manifest_outside_root_not_ignored(self, workspace):
        config = OverrideConfig(
            manifest_path=str(workspace / "downstream" / "overrides.json"),
            override_root=str(workspace / "downstream" / "src"),
            upstream_root=str(workspace / "upstream"),
            upstream_version="1.0",
        )
        assert build_context(config).ignored_paths() == []
        assert build_context(_config(workspace)).ignored_paths() == ["overrides.json"]

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(FileReadError):
            build_context(_config(tmp_path))


class TestUpgradePass:
    """升级入口"""

    @pytest.mark.asyncio
    async def test_upgrade_writes_manifest(self, workspace):
        report = await run_upgrade_pass(_config(workspace, version="2.0"))

        assert report.outcome_for("src/copy.js").status == UpgradeStatus.UPGRADED
        assert (workspace / "downstream" / "src" / "copy.js").read_text(encoding="utf-8") == COPY_V2

        document = json.loads(
            (workspace / "downstream" / "overrides.json").read_text(encoding="utf-8")
        )
        assert document["baseVersion"] == "2.0"
        assert document["overrides"][0]["baseVersion"] == "2.0"
        assert document["overrides"][0]["baseHash"] == file_hash(COPY_V2)

        again = await run_validation_pass(_config(workspace, version="2.0"))
        assert again.ok

    @pytest.mark.asyncio
    async def test_nothing_to_do_leaves_manifest_untouched(self, workspace):
        manifest_path = workspace / "downstream" / "overrides.json"
        before = manifest_path.read_text(encoding="utf-8")

        report = await run_upgrade_pass(_config(workspace))

        assert report.ok
        assert not report.changed
        assert manifest_path.read_text(encoding="utf-8") == before
        assert read_manifest(manifest_path).base_version == "1.0"


class TestBuildContext:
    """上下文组装"""

    def test_log_level_applied(self, workspace, root_logger):
        build_context(_config(workspace, log_level="DEBUG"))
        assert root_logger.level == logging.DEBUG
