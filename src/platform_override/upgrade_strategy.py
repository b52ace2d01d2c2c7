"""
upgrade_strategy - override 升级策略

升级策略是不可变的描述对象，说明如何让 override 与新的 upstream 快照重新一致；
实际 I/O 由 execute_upgrade() 使用策略参数完成。

策略:
- assumeUpToDate(file): 不做内容变换（仅 PlatformOverride）
- copyFile(overrideFile, baseFile): 以 upstream 新版本内容逐字节替换
- copyDirectory(dir, baseDir): 递归替换整个子树，并删除 upstream 已移除的文件
- threeWayMerge(overrideFile, baseFile, baseVersion): 将 override 相对 pinned
  upstream 的修改应用到新 upstream 上

写入均通过 FileRepository.commit() 暂存提交，合并/复制中途取消不会留下半写文件。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import (
    MergeConflictError,
    OverrideNotFoundError,
    PathEscapeError,
    UpgradeError,
    UpstreamResolutionError,
)
from .merge import three_way_merge
from .path_utils import is_escaping_path, join_path, relative_to
from .repository import FileRepository, FileType, UpstreamRepository

logger = logging.getLogger(__name__)


class UpgradeKind(str, Enum):
    """升级算法"""

    ASSUME_UP_TO_DATE = "assumeUpToDate"
    COPY_FILE = "copyFile"
    COPY_DIRECTORY = "copyDirectory"
    THREE_WAY_MERGE = "threeWayMerge"


@dataclass(frozen=True)
class UpgradeStrategy:
    """
    升级策略描述

    Attributes:
        kind: 升级算法
        override_name: 所属 override 名称
        override_path: downstream 文件/目录
        base_path: upstream 文件/目录
        base_version: pinned upstream 版本（仅三方合并使用）
    """

    kind: UpgradeKind
    override_name: str
    override_path: str
    base_path: Optional[str] = None
    base_version: Optional[str] = None


class UpgradeStrategies:
    """升级策略构造函数集合"""

    @staticmethod
    def assume_up_to_date(override_file: str) -> UpgradeStrategy:
        return UpgradeStrategy(UpgradeKind.ASSUME_UP_TO_DATE, override_file, override_file)

    @staticmethod
    def copy_file(override_file: str, base_file: str) -> UpgradeStrategy:
        return UpgradeStrategy(
            UpgradeKind.COPY_FILE, override_file, override_file, base_path=base_file
        )

    @staticmethod
    def copy_directory(override_directory: str, base_directory: str) -> UpgradeStrategy:
        return UpgradeStrategy(
            UpgradeKind.COPY_DIRECTORY,
            override_directory,
            override_directory,
            base_path=base_directory,
        )

    @staticmethod
    def three_way_merge(override_file: str, base_file: str, base_version: str) -> UpgradeStrategy:
        return UpgradeStrategy(
            UpgradeKind.THREE_WAY_MERGE,
            override_file,
            override_file,
            base_path=base_file,
            base_version=base_version,
        )


@dataclass(frozen=True)
class UpgradeResult:
    """单个 override 的升级结果"""

    override_name: str
    files_written: bool
    has_conflicts: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "override": self.override_name,
            "files_written": self.files_written,
            "has_conflicts": self.has_conflicts,
        }


# =============================================================================
# 执行
# =============================================================================


async def _copy_file(strategy, upstream_repo, override_repo, new_version, allow_conflicts):
    content = await upstream_repo.read_file(strategy.base_path, new_version)
    if content is None:
        raise UpstreamResolutionError(
            f"无法读取 upstream 文件: {strategy.base_path}",
            {"base_file": strategy.base_path, "version": new_version},
        )
    await override_repo.commit({strategy.override_path: content})
    return UpgradeResult(strategy.override_name, files_written=True)


async def _copy_directory(strategy, upstream_repo, override_repo, new_version, allow_conflicts):
    if await upstream_repo.stat(strategy.base_path, new_version) != FileType.DIRECTORY:
        raise UpstreamResolutionError(
            f"无法找到 upstream 目录: {strategy.base_path}",
            {"base_directory": strategy.base_path, "version": new_version},
        )

    # 全部内容先读入缓冲，读取完成后一次性提交
    writes: Dict[str, bytes] = {}
    for base_file in await upstream_repo.list_files(strategy.base_path, new_version):
        rel = relative_to(base_file, strategy.base_path)
        if is_escaping_path(rel):
            raise PathEscapeError(
                f"upstream 文件越出目录范围: {base_file}",
                {"base_directory": strategy.base_path, "file": base_file},
            )
        content = await upstream_repo.read_file(base_file, new_version)
        if content is None:
            raise UpstreamResolutionError(
                f"无法读取 upstream 文件: {base_file}",
                {"base_file": base_file, "version": new_version},
            )
        writes[join_path(strategy.override_path, rel)] = content

    existing = await override_repo.list_files(strategy.override_path)
    deletes = [f for f in existing if f not in writes]

    await override_repo.commit(writes, deletes)
    logger.info(
        f"目录复制完成: {strategy.override_path} <- {strategy.base_path}@{new_version}, "
        f"files={len(writes)}, deleted={len(deletes)}"
    )
    return UpgradeResult(strategy.override_name, files_written=True)


def _decode(content: bytes, path: str) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UpgradeError(
            f"三方合并仅支持 UTF-8 文本: {path}",
            {"path": path, "error": str(e)},
        )


async def _three_way_merge(strategy, upstream_repo, override_repo, new_version, allow_conflicts):
    override_content = await override_repo.read_file(strategy.override_path)
    if override_content is None:
        raise OverrideNotFoundError(
            f"无法读取 override 文件: {strategy.override_path}",
            {"override_file": strategy.override_path},
        )

    if strategy.base_version == new_version:
        return UpgradeResult(strategy.override_name, files_written=False)

    pinned = await upstream_repo.read_file(strategy.base_path, strategy.base_version)
    if pinned is None:
        raise UpstreamResolutionError(
            f"无法读取 pinned upstream 文件: {strategy.base_path}@{strategy.base_version}",
            {"base_file": strategy.base_path, "version": strategy.base_version},
        )
    target = await upstream_repo.read_file(strategy.base_path, new_version)
    if target is None:
        raise UpstreamResolutionError(
            f"无法读取目标 upstream 文件: {strategy.base_path}@{new_version}",
            {"base_file": strategy.base_path, "version": new_version},
        )

    result = three_way_merge(
        base=_decode(pinned, strategy.base_path),
        ours=_decode(override_content, strategy.override_path),
        theirs=_decode(target, strategy.base_path),
        base_label=f"BASE ({strategy.base_version})",
        theirs_label=f"UPSTREAM ({new_version})",
    )

    if result.has_conflicts and not allow_conflicts:
        raise MergeConflictError(
            f"三方合并存在冲突: {strategy.override_path}",
            {
                "override_file": strategy.override_path,
                "base_file": strategy.base_path,
                "base_version": strategy.base_version,
                "new_version": new_version,
                "conflict_count": result.conflict_count,
            },
        )

    await override_repo.commit({strategy.override_path: result.content})
    if result.has_conflicts:
        logger.warning(
            f"合并结果包含冲突标记: {strategy.override_path}, conflicts={result.conflict_count}"
        )
    return UpgradeResult(
        strategy.override_name, files_written=True, has_conflicts=result.has_conflicts
    )


async def _assume_up_to_date(strategy, upstream_repo, override_repo, new_version, allow_conflicts):
    return UpgradeResult(strategy.override_name, files_written=False)


_EXECUTORS = {
    UpgradeKind.ASSUME_UP_TO_DATE: _assume_up_to_date,
    UpgradeKind.COPY_FILE: _copy_file,
    UpgradeKind.COPY_DIRECTORY: _copy_directory,
    UpgradeKind.THREE_WAY_MERGE: _three_way_merge,
}


async def execute_upgrade(
    strategy: UpgradeStrategy,
    upstream_repo: UpstreamRepository,
    override_repo: FileRepository,
    new_version: Optional[str] = None,
    allow_conflicts: bool = False,
) -> UpgradeResult:
    """
    按策略执行升级

    Args:
        strategy: 升级策略
        upstream_repo: upstream 仓库
        override_repo: downstream 仓库
        new_version: 目标 upstream 版本，None 表示 upstream 当前版本
        allow_conflicts: 是否允许写入带冲突标记的合并结果

    Returns:
        UpgradeResult

    Raises:
        ResolutionError: upstream 或 override 无法解析
        MergeConflictError: 存在冲突且 allow_conflicts=False（不写入任何内容）
        UpgradeError: 内容无法合并（如非文本）
    """
    target_version = new_version or upstream_repo.get_version()
    return await _EXECUTORS[strategy.kind](
        strategy, upstream_repo, override_repo, target_version, allow_conflicts
    )
