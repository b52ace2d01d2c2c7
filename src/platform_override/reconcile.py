"""
reconcile - manifest 级别的批量校验与升级

流程:
1. validate_manifest(): 对每个 override 执行全部校验策略，汇总 pass/fail；
   额外报告 downstream 中未被任何 override 登记的文件
2. upgrade_manifest(): 对过期（baseUpToDate 失败）的 override 执行升级策略，
   成功后通过 factory 生成重新固定的实例并整条替换 manifest 条目

隔离原则:
- 单个 override 的校验/升级失败只影响其自身结果，不中断其余 override
- 不变量违反（重复名称、范围重叠、路径越界）中止整个批次
- 不同 override 之间可并发执行（由 asyncio.Semaphore 限制并发度），无顺序保证
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .errors import (
    ErrorCode,
    ExitCode,
    InvariantViolationError,
    MergeConflictError,
    OverrideError,
    ResolutionError,
)
from .manifest import Manifest
from .override import Override
from .override_factory import OverrideFactory
from .repository import FileRepository, UpstreamRepository
from .upgrade_strategy import execute_upgrade
from .validation_strategy import (
    ValidationErrorType,
    ValidationKind,
    ValidationOutcome,
    run_validation,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8

# manifest 级检查名（未登记文件）
MANIFEST_COVERAGE_CHECK = "manifestCoverage"


# =============================================================================
# 校验
# =============================================================================


@dataclass
class OverrideValidationResult:
    """单个 override 的全部校验结果"""

    override_name: str
    outcomes: List[ValidationOutcome] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(outcome.passed for outcome in self.outcomes)

    @property
    def stale(self) -> bool:
        """upstream 自上次对账后已变化"""
        return any(
            outcome.error_type == ValidationErrorType.BASE_CHANGED for outcome in self.outcomes
        )

    def failures(self) -> List[ValidationOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "override": self.override_name,
            "passed": self.passed,
            "stale": self.stale,
            "checks": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class ValidationReport:
    """manifest 校验报告"""

    results: List[OverrideValidationResult] = field(default_factory=list)
    manifest_outcomes: List[ValidationOutcome] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def ok(self) -> bool:
        return all(r.passed for r in self.results) and all(
            o.passed for o in self.manifest_outcomes
        )

    @property
    def exit_code(self) -> int:
        return ExitCode.SUCCESS if self.ok else ExitCode.VALIDATION_FAILED

    def result_for(self, name: str) -> Optional[OverrideValidationResult]:
        for result in self.results:
            if result.override_name == name:
                return result
        return None

    def stale_overrides(self) -> List[str]:
        return [r.override_name for r in self.results if r.stale]

    def failed_overrides(self) -> List[str]:
        return [r.override_name for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "timestamp": self.timestamp,
            "overrides": [r.to_dict() for r in self.results],
            "manifest": [o.to_dict() for o in self.manifest_outcomes],
            "stale": self.stale_overrides(),
            "failed": self.failed_overrides(),
        }


async def validate_override(
    override: Override,
    override_repo: FileRepository,
    upstream_repo: UpstreamRepository,
    kinds: Optional[Sequence[ValidationKind]] = None,
) -> OverrideValidationResult:
    """
    按顺序执行 override 的校验策略

    校验过程中出现的可恢复错误（读取失败、哈希失败等）记为该项失败，
    不变量违反直接抛出。

    Args:
        kinds: 仅执行指定类型的检查，None 表示全部
    """
    result = OverrideValidationResult(override.name())
    for strategy in override.validation_strategies():
        if kinds is not None and strategy.kind not in kinds:
            continue
        try:
            outcome = await run_validation(strategy, override_repo, upstream_repo)
        except InvariantViolationError:
            raise
        except OverrideError as e:
            logger.error(f"校验执行失败: override={override.name()}, check={strategy.kind.value}, {e.message}")
            outcome = ValidationOutcome(
                check=strategy.kind.value,
                override_name=override.name(),
                passed=False,
                reason=f"{ErrorCode.VALIDATION_CHECK_ERROR} [{e.error_type}] {e.message}",
            )
        result.outcomes.append(outcome)
    return result


async def validate_manifest(
    manifest: Manifest,
    override_repo: FileRepository,
    upstream_repo: UpstreamRepository,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ignore: Sequence[str] = (),
) -> ValidationReport:
    """
    校验 manifest 中的全部 override

    不在首个失败处短路：每个 override 都会得到完整的检查结果。

    Args:
        manifest: override 集合
        override_repo: downstream 仓库
        upstream_repo: upstream 仓库（当前版本）
        max_concurrency: 最大并发 override 数
        ignore: 未登记文件检查中忽略的路径

    Returns:
        ValidationReport（results 按 override 名称排序）
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _validate(override: Override) -> OverrideValidationResult:
        async with semaphore:
            return await validate_override(override, override_repo, upstream_repo)

    results = await asyncio.gather(*(_validate(o) for o in manifest.list_overrides()))

    manifest_outcomes = [
        ValidationOutcome(
            check=MANIFEST_COVERAGE_CHECK,
            override_name=file,
            passed=False,
            reason=f"文件未登记在 manifest 中: {file}",
            error_type=ValidationErrorType.MISSING_FROM_MANIFEST,
        )
        for file in await manifest.untracked_files(override_repo, ignore=ignore)
    ]

    report = ValidationReport(results=list(results), manifest_outcomes=manifest_outcomes)
    logger.info(
        f"校验完成: overrides={len(report.results)}, failed={len(report.failed_overrides())}, "
        f"stale={len(report.stale_overrides())}, untracked={len(manifest_outcomes)}"
    )
    return report


# =============================================================================
# 升级
# =============================================================================


class UpgradeStatus(str, Enum):
    """单个 override 的升级状态"""

    UPGRADED = "upgraded"
    UP_TO_DATE = "up_to_date"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class OverrideUpgradeOutcome:
    """单个 override 的升级结果"""

    override_name: str
    status: UpgradeStatus
    files_written: bool = False
    has_conflicts: bool = False
    base_version: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    # manifest 中的条目是否被新实例替换
    repinned: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "override": self.override_name,
            "status": self.status.value,
            "files_written": self.files_written,
            "has_conflicts": self.has_conflicts,
            "base_version": self.base_version,
            "repinned": self.repinned,
            "error": self.error,
        }


@dataclass
class UpgradeReport:
    """manifest 升级报告"""

    new_version: str
    outcomes: List[OverrideUpgradeOutcome] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def _with_status(self, status: UpgradeStatus) -> List[str]:
        return [o.override_name for o in self.outcomes if o.status == status]

    @property
    def ok(self) -> bool:
        return not self._with_status(UpgradeStatus.CONFLICT) and not self._with_status(
            UpgradeStatus.FAILED
        )

    @property
    def changed(self) -> bool:
        """manifest 是否有条目被替换"""
        return any(o.repinned for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        if self._with_status(UpgradeStatus.FAILED):
            return ExitCode.UPGRADE_ERROR
        if self._with_status(UpgradeStatus.CONFLICT):
            return ExitCode.MERGE_CONFLICT
        return ExitCode.SUCCESS

    def outcome_for(self, name: str) -> Optional[OverrideUpgradeOutcome]:
        for outcome in self.outcomes:
            if outcome.override_name == name:
                return outcome
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "timestamp": self.timestamp,
            "new_version": self.new_version,
            "overrides": [o.to_dict() for o in self.outcomes],
            "upgraded": self._with_status(UpgradeStatus.UPGRADED),
            "conflicts": self._with_status(UpgradeStatus.CONFLICT),
            "failed": self._with_status(UpgradeStatus.FAILED),
        }


async def _is_stale(
    override: Override, override_repo: FileRepository, upstream_repo: UpstreamRepository
) -> bool:
    result = await validate_override(
        override, override_repo, upstream_repo, kinds=[ValidationKind.BASE_UP_TO_DATE]
    )
    return not result.passed


async def upgrade_override(
    manifest: Manifest,
    override: Override,
    factory: OverrideFactory,
    upstream_repo: UpstreamRepository,
    override_repo: FileRepository,
    allow_conflicts: bool = False,
    force: bool = False,
) -> OverrideUpgradeOutcome:
    """
    升级单个 override 并在成功后替换 manifest 条目

    解析错误、合并冲突只影响该 override；不变量违反向上抛出。
    """
    name = override.name()
    new_version = upstream_repo.get_version()

    try:
        if not force and not await _is_stale(override, override_repo, upstream_repo):
            return OverrideUpgradeOutcome(name, UpgradeStatus.UP_TO_DATE)

        result = await execute_upgrade(
            override.upgrade_strategy(),
            upstream_repo,
            override_repo,
            new_version=new_version,
            allow_conflicts=allow_conflicts,
        )
        if result.has_conflicts:
            # 冲突标记已写入，override 保持原有 pin，待人工解决后再标记为最新
            logger.warning(f"override 合并存在冲突（已写入冲突标记）: {name}")
            return OverrideUpgradeOutcome(
                name,
                UpgradeStatus.CONFLICT,
                files_written=result.files_written,
                has_conflicts=True,
            )

        updated = await override.create_updated(factory)
    except MergeConflictError as e:
        logger.warning(f"override 合并存在冲突，未写入: {name}, {e.message}")
        return OverrideUpgradeOutcome(
            name,
            UpgradeStatus.CONFLICT,
            has_conflicts=True,
            error={**e.to_dict(), "reason": ErrorCode.UPGRADE_MERGE_CONFLICT},
        )
    except InvariantViolationError:
        raise
    except ResolutionError as e:
        logger.error(f"override 升级失败（无法解析）: {name}, {e.message}")
        return OverrideUpgradeOutcome(
            name,
            UpgradeStatus.FAILED,
            error={**e.to_dict(), "reason": ErrorCode.UPGRADE_RESOLUTION_FAILED},
        )
    except OverrideError as e:
        logger.error(f"override 升级失败: {name}, {e.message}")
        return OverrideUpgradeOutcome(
            name,
            UpgradeStatus.FAILED,
            error={**e.to_dict(), "reason": ErrorCode.UPGRADE_FAILED_GENERIC},
        )

    repinned = updated != override
    if not repinned and not result.files_written:
        return OverrideUpgradeOutcome(name, UpgradeStatus.UP_TO_DATE)

    if repinned:
        manifest.replace_override(updated)
    logger.info(f"override 已升级: {name} -> {new_version}")
    return OverrideUpgradeOutcome(
        name,
        UpgradeStatus.UPGRADED,
        files_written=result.files_written,
        base_version=getattr(updated, "base_version", None),
        repinned=repinned,
    )


async def upgrade_manifest(
    manifest: Manifest,
    factory: OverrideFactory,
    upstream_repo: UpstreamRepository,
    override_repo: FileRepository,
    allow_conflicts: bool = False,
    force: bool = False,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> UpgradeReport:
    """
    将 manifest 中过期的 override 升级到 upstream 当前版本

    Args:
        manifest: override 集合（成功升级的条目会被整条替换）
        factory: 生成重新固定 override 的 factory
        upstream_repo: upstream 仓库（当前版本即目标版本）
        override_repo: downstream 仓库
        allow_conflicts: 是否写入带冲突标记的合并结果
        force: 为 True 时不论是否过期都执行升级
        max_concurrency: 最大并发 override 数

    Returns:
        UpgradeReport（outcomes 按 override 名称排序）

    Raises:
        OverlappingOverridesError: override 范围重叠（任何写入之前检查）
        InvariantViolationError: 其他不变量违反，中止整个批次
    """
    manifest.check_disjoint()

    new_version = upstream_repo.get_version()
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _upgrade(override: Override) -> OverrideUpgradeOutcome:
        async with semaphore:
            return await upgrade_override(
                manifest,
                override,
                factory,
                upstream_repo,
                override_repo,
                allow_conflicts=allow_conflicts,
                force=force,
            )

    outcomes = await asyncio.gather(*(_upgrade(o) for o in manifest.list_overrides()))

    report = UpgradeReport(new_version=new_version, outcomes=list(outcomes))
    logger.info(
        f"升级完成: version={new_version}, upgraded={len(report._with_status(UpgradeStatus.UPGRADED))}, "
        f"conflicts={len(report._with_status(UpgradeStatus.CONFLICT))}, "
        f"failed={len(report._with_status(UpgradeStatus.FAILED))}"
    )
    return report
