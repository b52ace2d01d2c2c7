"""
override_factory - OverrideFactory 协作接口

OverrideFactory 负责依据 upstream "当前"状态构造重新固定 (re-pinned) 的 override：
读取 upstream 当前版本标签与内容哈希，写入新实例的 baseVersion/baseHash。

factory 作为参数注入（不是全局单例），测试中可替换为基于内存仓库的实现。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .errors import UpstreamResolutionError
from .hashing import hash_file_or_directory
from .override import (
    CopyOverride,
    DerivedOverride,
    DirectoryCopyOverride,
    Issue,
    Override,
    PatchOverride,
    PlatformOverride,
)
from .repository import FileType, UpstreamRepository

logger = logging.getLogger(__name__)


class OverrideFactory(ABC):
    """构造 override 的协作接口（全部为异步操作）"""

    @abstractmethod
    async def create_platform_override(self, file: str) -> Override:
        ...

    @abstractmethod
    async def create_copy_override(self, file: str, base_file: str, issue: int) -> Override:
        ...

    @abstractmethod
    async def create_derived_override(
        self, file: str, base_file: str, issue: Optional[Issue] = None
    ) -> Override:
        ...

    @abstractmethod
    async def create_patch_override(self, file: str, base_file: str, issue: Issue) -> Override:
        ...

    @abstractmethod
    async def create_directory_copy_override(
        self, directory: str, base_directory: str, issue: int
    ) -> Override:
        ...


class RepositoryOverrideFactory(OverrideFactory):
    """
    基于 UpstreamRepository 的 OverrideFactory 实现

    每次构造都以 upstream 当前版本为准计算 baseHash。
    """

    def __init__(self, upstream_repo: UpstreamRepository):
        self.upstream_repo = upstream_repo

    async def _pin(self, base_path: str, expected: FileType) -> Tuple[str, str]:
        """
        固定 upstream 路径的当前版本与哈希

        Returns:
            (base_version, base_hash)

        Raises:
            UpstreamResolutionError: 路径不存在或类型不符
        """
        version = self.upstream_repo.get_version()
        actual = await self.upstream_repo.stat(base_path)
        if actual != expected:
            raise UpstreamResolutionError(
                f"无法找到 upstream {expected.value}: {base_path}",
                {"base_path": base_path, "version": version, "actual": actual.value},
            )
        base_hash = await hash_file_or_directory(self.upstream_repo, base_path)
        if base_hash is None:
            raise UpstreamResolutionError(
                f"无法计算 upstream 哈希: {base_path}",
                {"base_path": base_path, "version": version},
            )
        logger.debug(f"固定 upstream: {base_path}@{version} hash={base_hash[:16]}...")
        return version, base_hash

    async def create_platform_override(self, file: str) -> Override:
        return PlatformOverride(file=file)

    async def create_copy_override(self, file: str, base_file: str, issue: int) -> Override:
        version, base_hash = await self._pin(base_file, FileType.FILE)
        return CopyOverride(
            file=file, base_file=base_file, base_version=version, base_hash=base_hash, issue=issue
        )

    async def create_derived_override(
        self, file: str, base_file: str, issue: Optional[Issue] = None
    ) -> Override:
        version, base_hash = await self._pin(base_file, FileType.FILE)
        return DerivedOverride(
            file=file, base_file=base_file, base_version=version, base_hash=base_hash, issue=issue
        )

    async def create_patch_override(self, file: str, base_file: str, issue: Issue) -> Override:
        version, base_hash = await self._pin(base_file, FileType.FILE)
        return PatchOverride(
            file=file, base_file=base_file, base_version=version, base_hash=base_hash, issue=issue
        )

    async def create_directory_copy_override(
        self, directory: str, base_directory: str, issue: int
    ) -> Override:
        version, base_hash = await self._pin(base_directory, FileType.DIRECTORY)
        return DirectoryCopyOverride(
            directory=directory,
            base_directory=base_directory,
            base_version=version,
            base_hash=base_hash,
            issue=issue,
        )
