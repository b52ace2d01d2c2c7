"""
runner - 基于 OverrideConfig 的校验/升级入口

组装 downstream 仓库、upstream 快照仓库、factory 与 manifest，供外部 CLI 调用。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import OverrideConfig, configure_logging, get_config
from .manifest import Manifest, read_manifest, write_manifest
from .override_factory import RepositoryOverrideFactory
from .path_utils import unix_path
from .reconcile import UpgradeReport, ValidationReport, upgrade_manifest, validate_manifest
from .repository import FilesystemRepository, SnapshotUpstreamRepository

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """一次对账所需的全部协作对象"""

    config: OverrideConfig
    manifest: Manifest
    override_repo: FilesystemRepository
    upstream_repo: SnapshotUpstreamRepository
    factory: RepositoryOverrideFactory

    def ignored_paths(self) -> List[str]:
        """manifest 文件位于 downstream 根目录内时，将其排除在未登记文件检查之外"""
        manifest_path = Path(self.config.manifest_path).resolve()
        root = Path(self.config.override_root).resolve()
        try:
            relative = manifest_path.relative_to(root)
        except ValueError:
            return []
        return [unix_path(str(relative))]


def build_context(config: Optional[OverrideConfig] = None) -> RunContext:
    """
    由配置构造 RunContext

    同时按 config.log_level 配置日志。

    Raises:
        FileReadError: manifest 不存在或无法读取
        ManifestFormatError: manifest 格式错误
        InvariantViolationError: manifest 不变量违反
    """
    config = config or get_config()
    configure_logging(config.log_level)
    upstream_repo = SnapshotUpstreamRepository(config.upstream_root, config.upstream_version)
    return RunContext(
        config=config,
        manifest=read_manifest(config.manifest_path),
        override_repo=FilesystemRepository(config.override_root),
        upstream_repo=upstream_repo,
        factory=RepositoryOverrideFactory(upstream_repo),
    )


async def run_validation_pass(config: Optional[OverrideConfig] = None) -> ValidationReport:
    """校验 manifest 中的全部 override"""
    context = build_context(config)
    logger.info(
        f"开始校验: manifest={context.config.manifest_path}, "
        f"upstream={context.config.upstream_version}, overrides={len(context.manifest)}"
    )
    return await validate_manifest(
        context.manifest,
        context.override_repo,
        context.upstream_repo,
        max_concurrency=context.config.max_concurrency,
        ignore=context.ignored_paths(),
    )


async def run_upgrade_pass(
    config: Optional[OverrideConfig] = None, force: bool = False
) -> UpgradeReport:
    """
    将过期的 override 升级到 upstream 当前版本

    有条目被替换时写回 manifest；全部成功时同时更新 manifest 的 baseVersion。
    """
    context = build_context(config)
    logger.info(
        f"开始升级: manifest={context.config.manifest_path}, "
        f"upstream={context.config.upstream_version}, overrides={len(context.manifest)}"
    )
    report = await upgrade_manifest(
        context.manifest,
        context.factory,
        context.upstream_repo,
        context.override_repo,
        allow_conflicts=context.config.allow_conflicts,
        force=force,
        max_concurrency=context.config.max_concurrency,
    )

    version_changed = report.ok and context.manifest.base_version not in (
        None,
        report.new_version,
    )
    if version_changed:
        context.manifest.base_version = report.new_version
    if report.changed or version_changed:
        write_manifest(context.config.manifest_path, context.manifest)
    return report
