# -*- coding: utf-8 -*-
"""
升级策略测试

测试覆盖:
1. assumeUpToDate 不写入
2. copyFile / copyDirectory（含删除 upstream 已移除的文件）
3. threeWayMerge: 干净合并、目标等于 pinned、冲突（默认不写入 / 允许写入标记）
4. 解析失败
"""

import pytest
from conftest import DOWNSTREAM, UPSTREAM_V2, V1, V2

from platform_override.errors import (
    MergeConflictError,
    OverrideNotFoundError,
    UpgradeError,
    UpstreamResolutionError,
)
from platform_override.repository import InMemoryRepository, InMemoryUpstreamRepository
from platform_override.upgrade_strategy import UpgradeKind, UpgradeStrategies, execute_upgrade


class TestSimpleStrategies:
    """无操作与复制"""

    @pytest.mark.asyncio
    async def test_assume_up_to_date(self, override_repo, upstream_repo):
        before = override_repo.files
        result = await execute_upgrade(
            UpgradeStrategies.assume_up_to_date("platform/only.js"), upstream_repo, override_repo
        )
        assert not result.files_written
        assert override_repo.files == before

    @pytest.mark.asyncio
    async def test_copy_file(self, override_repo, upstream_repo):
        result = await execute_upgrade(
            UpgradeStrategies.copy_file("src/copy.js", "lib/copy.js"),
            upstream_repo,
            override_repo,
            new_version=V2,
        )
        assert result.files_written
        assert override_repo.files["src/copy.js"] == UPSTREAM_V2["lib/copy.js"].encode()

    @pytest.mark.asyncio
    async def test_copy_file_defaults_to_current_version(self, override_repo, upstream_repo):
        upstream_repo.checkout(V2)
        await execute_upgrade(
            UpgradeStrategies.copy_file("src/copy.js", "lib/copy.js"), upstream_repo, override_repo
        )
        assert override_repo.files["src/copy.js"] == UPSTREAM_V2["lib/copy.js"].encode()

    @pytest.mark.asyncio
    async def test_copy_file_missing_base(self, override_repo, upstream_repo):
        with pytest.raises(UpstreamResolutionError):
            await execute_upgrade(
                UpgradeStrategies.copy_file("src/copy.js", "lib/missing.js"),
                upstream_repo,
                override_repo,
            )

    @pytest.mark.asyncio
    async def test_copy_directory(self, override_repo, upstream_repo):
        result = await execute_upgrade(
            UpgradeStrategies.copy_directory("third_party", "vendor"),
            upstream_repo,
            override_repo,
            new_version=V2,
        )
        assert result.files_written
        assert await override_repo.list_files("third_party") == [
            "third_party/a.txt",
            "third_party/new.txt",
            "third_party/sub/b.txt",
        ]
        assert override_repo.files["third_party/a.txt"] == b"a v2\n"
        # 目录外的文件不受影响
        assert override_repo.files["src/patch.js"] == DOWNSTREAM["src/patch.js"].encode()

    @pytest.mark.asyncio
    async def test_copy_directory_missing_base(self, override_repo, upstream_repo):
        before = override_repo.files
        with pytest.raises(UpstreamResolutionError):
            await execute_upgrade(
                UpgradeStrategies.copy_directory("third_party", "lib/copy.js"),
                upstream_repo,
                override_repo,
            )
        assert override_repo.files == before


class TestThreeWayMerge:
    """三方合并升级"""

    @pytest.mark.asyncio
    async def test_clean_merge(self, override_repo, upstream_repo):
        result = await execute_upgrade(
            UpgradeStrategies.three_way_merge("src/derived.js", "lib/derived.js", V1),
            upstream_repo,
            override_repo,
            new_version=V2,
        )
        assert result.files_written
        assert not result.has_conflicts
        assert override_repo.files["src/derived.js"] == b"line ONE\nline two\nline THREE\n"

    @pytest.mark.asyncio
    async def test_same_version_is_noop(self, override_repo, upstream_repo):
        result = await execute_upgrade(
            UpgradeStrategies.three_way_merge("src/derived.js", "lib/derived.js", V1),
            upstream_repo,
            override_repo,
            new_version=V1,
        )
        assert not result.files_written
        assert override_repo.files["src/derived.js"] == DOWNSTREAM["src/derived.js"].encode()

    @pytest.mark.asyncio
    async def test_unchanged_upstream_keeps_override(self, override_repo, upstream_repo):
        await execute_upgrade(
            UpgradeStrategies.three_way_merge("src/patch.js", "lib/patch.js", V1),
            upstream_repo,
            override_repo,
            new_version=V2,
        )
        assert override_repo.files["src/patch.js"] == DOWNSTREAM["src/patch.js"].encode()

    @pytest.mark.asyncio
    async def test_conflict_writes_nothing_by_default(self, override_repo, upstream_repo):
        with pytest.raises(MergeConflictError) as exc_info:
            await execute_upgrade(
                UpgradeStrategies.three_way_merge("src/conflict.js", "lib/conflict.js", V1),
                upstream_repo,
                override_repo,
                new_version=V2,
            )
        assert exc_info.value.details["conflict_count"] == 1
        assert override_repo.files["src/conflict.js"] == b"bar\n"

    @pytest.mark.asyncio
    async def test_conflict_markers_written_when_allowed(self, override_repo, upstream_repo):
        result = await execute_upgrade(
            UpgradeStrategies.three_way_merge("src/conflict.js", "lib/conflict.js", V1),
            upstream_repo,
            override_repo,
            new_version=V2,
            allow_conflicts=True,
        )
        assert result.has_conflicts
        assert override_repo.files["src/conflict.js"].decode() == (
            "<<<<<<< LOCAL (override)\n"
            "bar\n"
            "||||||| BASE (1.0)\n"
            "foo\n"
            "=======\n"
            "baz\n"
            ">>>>>>> UPSTREAM (2.0)\n"
        )

    @pytest.mark.asyncio
    async def test_missing_override(self, upstream_repo):
        with pytest.raises(OverrideNotFoundError):
            await execute_upgrade(
                UpgradeStrategies.three_way_merge("src/derived.js", "lib/derived.js", V1),
                upstream_repo,
                InMemoryRepository(),
                new_version=V2,
            )

    @pytest.mark.asyncio
    async def test_pinned_version_missing(self, override_repo, upstream_repo):
        with pytest.raises(UpstreamResolutionError):
            await execute_upgrade(
                UpgradeStrategies.three_way_merge("src/derived.js", "lib/derived.js", "0.9"),
                upstream_repo,
                override_repo,
                new_version=V2,
            )

    @pytest.mark.asyncio
    async def test_binary_content_rejected(self):
        upstream = InMemoryUpstreamRepository(
            {"1": {"bin.dat": b"\xff\xfe"}, "2": {"bin.dat": b"\xff\xfd"}}, "2"
        )
        downstream = InMemoryRepository({"bin.dat": b"\xff\x00"})
        with pytest.raises(UpgradeError):
            await execute_upgrade(
                UpgradeStrategies.three_way_merge("bin.dat", "bin.dat", "1"), upstream, downstream
            )

    def test_strategy_descriptor(self):
        strategy = UpgradeStrategies.three_way_merge("src/a.js", "lib/a.js", V1)
        assert strategy.kind == UpgradeKind.THREE_WAY_MERGE
        assert strategy.kind.value == "threeWayMerge"
        assert strategy.base_version == V1
