# -*- coding: utf-8 -*-
"""
manifest 批量校验与升级测试

测试覆盖:
1. 全部 override 处于最新状态时校验通过
2. upstream 前进后的过期检测
3. 单个 override 缺失文件只影响其自身结果
4. 升级: 复制、三方合并、目录复制、冲突隔离、解析失败与提交失败隔离
5. 升级后再次校验
6. 范围重叠在写入前中止
"""

import pytest
from conftest import DOWNSTREAM, UPSTREAM_V1, UPSTREAM_V2, V1, V2, file_hash

from platform_override.errors import ExitCode, OverlappingOverridesError
from platform_override.manifest import Manifest
from platform_override.override import CopyOverride, DerivedOverride, PlatformOverride
from platform_override.override_factory import RepositoryOverrideFactory
from platform_override.reconcile import (
    UpgradeStatus,
    upgrade_manifest,
    validate_manifest,
    validate_override,
)
from platform_override.repository import (
    FilesystemRepository,
    InMemoryRepository,
    InMemoryUpstreamRepository,
)
from platform_override.validation_strategy import ValidationErrorType


class TestValidateManifest:
    """批量校验"""

    @pytest.mark.asyncio
    async def test_all_up_to_date(self, all_overrides, override_repo, upstream_repo):
        report = await validate_manifest(Manifest(all_overrides), override_repo, upstream_repo)
        assert report.ok
        assert report.exit_code == ExitCode.SUCCESS
        assert [r.override_name for r in report.results] == sorted(
            o.name() for o in all_overrides
        )

    @pytest.mark.asyncio
    async def test_stale_after_upstream_moves(self, all_overrides, override_repo, upstream_repo):
        upstream_repo.checkout(V2)
        report = await validate_manifest(Manifest(all_overrides), override_repo, upstream_repo)

        assert not report.ok
        assert report.exit_code == ExitCode.VALIDATION_FAILED
        assert report.stale_overrides() == [
            "src/conflict.js",
            "src/copy.js",
            "src/derived.js",
            "third_party",
        ]

    @pytest.mark.asyncio
    async def test_missing_file_isolated(self, all_overrides, upstream_repo):
        files = dict(DOWNSTREAM)
        del files["src/derived.js"]
        report = await validate_manifest(
            Manifest(all_overrides), InMemoryRepository(files), upstream_repo, max_concurrency=2
        )

        assert report.failed_overrides() == ["src/derived.js"]
        failures = report.result_for("src/derived.js").failures()
        assert {f.error_type for f in failures} == {ValidationErrorType.OVERRIDE_NOT_FOUND}
        # 其余检查仍然执行，不在首个失败处短路
        assert len(report.result_for("src/derived.js").outcomes) == 4

    @pytest.mark.asyncio
    async def test_derived_identical_to_base_flagged(self, derived_override, upstream_repo):
        repo = InMemoryRepository({"src/derived.js": UPSTREAM_V1["lib/derived.js"]})
        result = await validate_override(derived_override, repo, upstream_repo)
        assert not result.passed
        assert result.failures()[0].error_type == ValidationErrorType.OVERRIDE_SAME_AS_BASE

    @pytest.mark.asyncio
    async def test_untracked_files_reported(self, all_overrides, upstream_repo):
        files = dict(DOWNSTREAM)
        files["src/stray.js"] = "stray"
        files["overrides.json"] = "{}"
        report = await validate_manifest(
            Manifest(all_overrides),
            InMemoryRepository(files),
            upstream_repo,
            ignore=["overrides.json"],
        )
        assert not report.ok
        assert [o.override_name for o in report.manifest_outcomes] == ["src/stray.js"]
        assert report.manifest_outcomes[0].error_type == ValidationErrorType.MISSING_FROM_MANIFEST
        assert report.failed_overrides() == []

    @pytest.mark.asyncio
    async def test_report_to_dict(self, copy_override, override_repo, upstream_repo):
        report = await validate_manifest(Manifest([copy_override]), override_repo, upstream_repo)
        data = report.to_dict()
        assert data["ok"] is True
        assert data["overrides"][0]["override"] == "src/copy.js"
        assert [c["check"] for c in data["overrides"][0]["checks"]] == [
            "baseFileExists",
            "overrideFileExists",
            "baseUpToDate",
            "overrideCopyOfBase",
        ]


class TestUpgradeManifest:
    """批量升级"""

    @pytest.mark.asyncio
    async def test_upgrade_to_new_version(
        self, all_overrides, factory, override_repo, upstream_repo
    ):
        manifest = Manifest(all_overrides)
        upstream_repo.checkout(V2)

        report = await upgrade_manifest(manifest, factory, upstream_repo, override_repo)

        statuses = {o.override_name: o.status for o in report.outcomes}
        assert statuses == {
            "platform/only.js": UpgradeStatus.UP_TO_DATE,
            "src/conflict.js": UpgradeStatus.CONFLICT,
            "src/copy.js": UpgradeStatus.UPGRADED,
            "src/derived.js": UpgradeStatus.UPGRADED,
            "src/patch.js": UpgradeStatus.UP_TO_DATE,
            "third_party": UpgradeStatus.UPGRADED,
        }
        assert report.new_version == V2
        assert report.changed
        assert not report.ok
        assert report.exit_code == ExitCode.MERGE_CONFLICT

        files = override_repo.files
        assert files["src/copy.js"] == UPSTREAM_V2["lib/copy.js"].encode()
        assert files["src/derived.js"] == b"line ONE\nline two\nline THREE\n"
        assert files["src/conflict.js"] == b"bar\n"
        assert "third_party/old.txt" not in files
        assert files["third_party/new.txt"] == b"new\n"

        assert manifest.find_override("src/copy.js").base_version == V2
        assert manifest.find_override("src/derived.js").base_hash == file_hash(
            UPSTREAM_V2["lib/derived.js"]
        )
        # 冲突的 override 保持原有 pin
        assert manifest.find_override("src/conflict.js").base_version == V1

        after = await validate_manifest(manifest, override_repo, upstream_repo)
        assert after.failed_overrides() == ["src/conflict.js"]
        assert after.stale_overrides() == ["src/conflict.js"]

    @pytest.mark.asyncio
    async def test_stale_copy_fixed_by_upgrade(self, copy_override, factory, upstream_repo):
        override_repo = InMemoryRepository({"src/copy.js": UPSTREAM_V1["lib/copy.js"]})
        manifest = Manifest([copy_override])
        upstream_repo.checkout(V2)

        before = await validate_manifest(manifest, override_repo, upstream_repo)
        assert before.stale_overrides() == ["src/copy.js"]

        report = await upgrade_manifest(manifest, factory, upstream_repo, override_repo)
        assert report.ok

        after = await validate_manifest(manifest, override_repo, upstream_repo)
        assert after.ok

    @pytest.mark.asyncio
    async def test_conflict_markers_written_when_allowed(
        self, conflict_override, factory, override_repo, upstream_repo
    ):
        manifest = Manifest([conflict_override])
        upstream_repo.checkout(V2)

        report = await upgrade_manifest(
            manifest, factory, upstream_repo, override_repo, allow_conflicts=True
        )

        outcome = report.outcome_for("src/conflict.js")
        assert outcome.status == UpgradeStatus.CONFLICT
        assert outcome.files_written
        assert b"<<<<<<< LOCAL (override)" in override_repo.files["src/conflict.js"]
        assert manifest.find_override("src/conflict.js") == conflict_override
        assert not report.changed

    @pytest.mark.asyncio
    async def test_missing_base_isolated(self, copy_override, derived_override, override_repo):
        v2 = dict(UPSTREAM_V2)
        del v2["lib/copy.js"]
        upstream_repo = InMemoryUpstreamRepository({V1: UPSTREAM_V1, V2: v2}, current_version=V2)
        manifest = Manifest([copy_override, derived_override])
        report = await upgrade_manifest(
            manifest, RepositoryOverrideFactory(upstream_repo), upstream_repo, override_repo
        )

        failed = report.outcome_for("src/copy.js")
        assert failed.status == UpgradeStatus.FAILED
        assert failed.error["reason"] == "upgrade_failed:resolution_error"
        assert report.outcome_for("src/derived.js").status == UpgradeStatus.UPGRADED
        assert report.exit_code == ExitCode.UPGRADE_ERROR
        assert manifest.find_override("src/copy.js") == copy_override

    @pytest.mark.asyncio
    async def test_commit_failure_isolated(
        self, tmp_path, copy_override, directory_override, factory, upstream_repo
    ):
        for path, text in DOWNSTREAM.items():
            target = tmp_path / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        # upstream 2.0 新增 vendor/new.txt，而 downstream 同名路径是目录
        (tmp_path / "third_party" / "new.txt").mkdir()
        manifest = Manifest([copy_override, directory_override])
        upstream_repo.checkout(V2)

        report = await upgrade_manifest(
            manifest, factory, upstream_repo, FilesystemRepository(tmp_path)
        )

        failed = report.outcome_for("third_party")
        assert failed.status == UpgradeStatus.FAILED
        assert failed.error["code"] == "FILE_WRITE_ERROR"
        assert report.outcome_for("src/copy.js").status == UpgradeStatus.UPGRADED
        assert (tmp_path / "third_party" / "a.txt").read_text(encoding="utf-8") == "a v1\n"
        assert (tmp_path / "third_party" / "old.txt").exists()
        assert manifest.find_override("third_party") == directory_override
        assert report.exit_code == ExitCode.UPGRADE_ERROR

    @pytest.mark.asyncio
    async def test_nothing_stale(self, all_overrides, factory, override_repo, upstream_repo):
        manifest = Manifest(all_overrides)
        before = override_repo.files

        report = await upgrade_manifest(manifest, factory, upstream_repo, override_repo)

        assert report.ok
        assert not report.changed
        assert {o.status for o in report.outcomes} == {UpgradeStatus.UP_TO_DATE}
        assert override_repo.files == before

    @pytest.mark.asyncio
    async def test_force_repins_in_place_edit(self, factory, upstream_repo):
        # 同一版本标签下 upstream 内容被替换: 哈希变化但版本不变
        stale = DerivedOverride(
            file="src/derived.js",
            base_file="lib/derived.js",
            base_version=V1,
            base_hash="0" * 64,
        )
        override_repo = InMemoryRepository({"src/derived.js": DOWNSTREAM["src/derived.js"]})
        manifest = Manifest([stale, PlatformOverride(file="platform/only.js")])

        report = await upgrade_manifest(
            manifest, factory, upstream_repo, override_repo, force=True, max_concurrency=1
        )

        assert report.outcome_for("src/derived.js").status == UpgradeStatus.UPGRADED
        assert not report.outcome_for("src/derived.js").files_written
        assert report.outcome_for("platform/only.js").status == UpgradeStatus.UP_TO_DATE
        assert report.outcome_for("src/derived.js").repinned
        assert report.changed
        assert manifest.find_override("src/derived.js").base_hash == file_hash(
            UPSTREAM_V1["lib/derived.js"]
        )

    @pytest.mark.asyncio
    async def test_force_rewrites_drifted_copy(self, copy_override, factory, upstream_repo):
        # pin 未变，但 downstream 内容被重新写入
        override_repo = InMemoryRepository({"src/copy.js": "local edit\n"})
        manifest = Manifest([copy_override])

        report = await upgrade_manifest(
            manifest, factory, upstream_repo, override_repo, force=True
        )

        outcome = report.outcome_for("src/copy.js")
        assert outcome.status == UpgradeStatus.UPGRADED
        assert outcome.files_written
        assert not outcome.repinned
        assert not report.changed
        assert override_repo.files["src/copy.js"] == UPSTREAM_V1["lib/copy.js"].encode()
        assert manifest.find_override("src/copy.js") is copy_override

    @pytest.mark.asyncio
    async def test_overlap_aborts_before_writes(
        self, directory_override, factory, override_repo, upstream_repo
    ):
        overlapping = CopyOverride(
            file="third_party/a.txt",
            base_file="vendor/a.txt",
            base_version=V1,
            base_hash=file_hash(UPSTREAM_V1["vendor/a.txt"]),
            issue=1,
        )
        manifest = Manifest([directory_override, overlapping])
        upstream_repo.checkout(V2)
        before = override_repo.files

        with pytest.raises(OverlappingOverridesError):
            await upgrade_manifest(manifest, factory, upstream_repo, override_repo)
        assert override_repo.files == before

    @pytest.mark.asyncio
    async def test_report_to_dict(self, copy_override, factory, override_repo, upstream_repo):
        upstream_repo.checkout(V2)
        report = await upgrade_manifest(
            Manifest([copy_override]), factory, upstream_repo, override_repo
        )
        data = report.to_dict()
        assert data["upgraded"] == ["src/copy.js"]
        assert data["overrides"][0]["status"] == "upgraded"
        assert data["overrides"][0]["base_version"] == V2
