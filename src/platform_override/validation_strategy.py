"""
validation_strategy - override 校验策略

每个校验策略是一个不可变的描述对象（检查名 + 所需路径/哈希参数），
由 run_validation() 针对注入的仓库执行，返回 pass/fail 与可读原因。

检查项:
- overrideFileExists / overrideDirectoryExists: downstream 路径存在且类型正确
- baseFileExists / baseDirectoryExists: upstream 当前版本中路径存在且类型正确
- baseUpToDate: 重新计算 upstream 当前哈希并与记录的 baseHash 比较（过期检测）
- overrideCopyOfBase: downstream 与 upstream 逐字节相同（目录为递归比较）
- overrideDifferentFromBase: downstream 必须与 upstream 不同

校验失败总是以结果形式返回，不抛出异常。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .hashing import hash_file_or_directory
from .path_utils import relative_to
from .repository import FileRepository, FileType, UpstreamRepository


class ValidationKind(str, Enum):
    """校验检查名"""

    OVERRIDE_FILE_EXISTS = "overrideFileExists"
    OVERRIDE_DIRECTORY_EXISTS = "overrideDirectoryExists"
    BASE_FILE_EXISTS = "baseFileExists"
    BASE_DIRECTORY_EXISTS = "baseDirectoryExists"
    BASE_UP_TO_DATE = "baseUpToDate"
    OVERRIDE_COPY_OF_BASE = "overrideCopyOfBase"
    OVERRIDE_DIFFERENT_FROM_BASE = "overrideDifferentFromBase"


class ValidationErrorType(str, Enum):
    """校验失败类型"""

    OVERRIDE_NOT_FOUND = "overrideNotFound"
    BASE_NOT_FOUND = "baseNotFound"
    EXPECTED_FILE = "expectedFile"
    EXPECTED_DIRECTORY = "expectedDirectory"
    BASE_CHANGED = "baseChanged"
    OVERRIDE_DIFFERENT_FROM_BASE = "overrideDifferentFromBase"
    OVERRIDE_SAME_AS_BASE = "overrideSameAsBase"
    MISSING_FROM_MANIFEST = "missingFromManifest"


@dataclass(frozen=True)
class ValidationOutcome:
    """单项校验结果"""

    check: str
    override_name: str
    passed: bool
    reason: str
    error_type: Optional[ValidationErrorType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check": self.check,
            "override": self.override_name,
            "passed": self.passed,
            "reason": self.reason,
            "error_type": self.error_type.value if self.error_type else None,
        }


@dataclass(frozen=True)
class ValidationStrategy:
    """
    校验策略描述

    Attributes:
        kind: 检查名
        override_name: 所属 override 名称（用于报告）
        override_path: downstream 路径
        base_path: upstream 路径
        base_hash: 记录的 baseHash（仅 baseUpToDate 使用）
    """

    kind: ValidationKind
    override_name: str
    override_path: Optional[str] = None
    base_path: Optional[str] = None
    base_hash: Optional[str] = None


class ValidationStrategies:
    """校验策略构造函数集合"""

    @staticmethod
    def override_file_exists(override_file: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.OVERRIDE_FILE_EXISTS, override_file, override_path=override_file
        )

    @staticmethod
    def override_directory_exists(override_directory: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.OVERRIDE_DIRECTORY_EXISTS,
            override_directory,
            override_path=override_directory,
        )

    @staticmethod
    def base_file_exists(override_name: str, base_file: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.BASE_FILE_EXISTS, override_name, base_path=base_file
        )

    @staticmethod
    def base_directory_exists(override_name: str, base_directory: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.BASE_DIRECTORY_EXISTS, override_name, base_path=base_directory
        )

    @staticmethod
    def base_up_to_date(override_name: str, base_path: str, base_hash: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.BASE_UP_TO_DATE,
            override_name,
            base_path=base_path,
            base_hash=base_hash,
        )

    @staticmethod
    def override_copy_of_base(override_path: str, base_path: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.OVERRIDE_COPY_OF_BASE,
            override_path,
            override_path=override_path,
            base_path=base_path,
        )

    @staticmethod
    def override_different_from_base(override_path: str, base_path: str) -> ValidationStrategy:
        return ValidationStrategy(
            ValidationKind.OVERRIDE_DIFFERENT_FROM_BASE,
            override_path,
            override_path=override_path,
            base_path=base_path,
        )


# =============================================================================
# 执行
# =============================================================================


def _passed(strategy: ValidationStrategy, reason: str) -> ValidationOutcome:
    return ValidationOutcome(strategy.kind.value, strategy.override_name, True, reason)


def _failed(
    strategy: ValidationStrategy, error_type: ValidationErrorType, reason: str
) -> ValidationOutcome:
    return ValidationOutcome(strategy.kind.value, strategy.override_name, False, reason, error_type)


def _check_type(
    strategy: ValidationStrategy,
    path: str,
    actual: FileType,
    expected: FileType,
    not_found: ValidationErrorType,
    side: str,
) -> ValidationOutcome:
    if actual == expected:
        return _passed(strategy, f"{side} {expected.value} 存在: {path}")
    if actual == FileType.NONE:
        return _failed(strategy, not_found, f"{side} {expected.value} 不存在: {path}")
    wrong_type = (
        ValidationErrorType.EXPECTED_FILE
        if expected == FileType.FILE
        else ValidationErrorType.EXPECTED_DIRECTORY
    )
    return _failed(strategy, wrong_type, f"{side} 应为 {expected.value}，实际为 {actual.value}: {path}")


async def _override_file_exists(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    path = strategy.override_path
    actual = await override_repo.stat(path)
    return _check_type(
        strategy, path, actual, FileType.FILE, ValidationErrorType.OVERRIDE_NOT_FOUND, "override"
    )


async def _override_directory_exists(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    path = strategy.override_path
    actual = await override_repo.stat(path)
    return _check_type(
        strategy,
        path,
        actual,
        FileType.DIRECTORY,
        ValidationErrorType.OVERRIDE_NOT_FOUND,
        "override",
    )


async def _base_file_exists(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    path = strategy.base_path
    actual = await upstream_repo.stat(path)
    return _check_type(
        strategy, path, actual, FileType.FILE, ValidationErrorType.BASE_NOT_FOUND, "base"
    )


async def _base_directory_exists(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    path = strategy.base_path
    actual = await upstream_repo.stat(path)
    return _check_type(
        strategy, path, actual, FileType.DIRECTORY, ValidationErrorType.BASE_NOT_FOUND, "base"
    )


async def _base_up_to_date(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    current_hash = await hash_file_or_directory(upstream_repo, strategy.base_path)
    if current_hash is None:
        return _failed(
            strategy,
            ValidationErrorType.BASE_NOT_FOUND,
            f"无法计算 base 哈希，路径不存在: {strategy.base_path}",
        )
    if current_hash != strategy.base_hash:
        return _failed(
            strategy,
            ValidationErrorType.BASE_CHANGED,
            f"base 自上次对账后已变化 (upstream {upstream_repo.get_version()}): "
            f"{strategy.base_path} 记录 {strategy.base_hash}，当前 {current_hash}",
        )
    return _passed(strategy, f"base 未变化: {strategy.base_path}")


async def _read_both(strategy, override_repo, upstream_repo):
    """读取 override 与 base 内容，任一方缺失时返回失败结果"""
    override_content = await override_repo.read_file(strategy.override_path)
    if override_content is None:
        return None, None, _failed(
            strategy,
            ValidationErrorType.OVERRIDE_NOT_FOUND,
            f"无法读取 override: {strategy.override_path}",
        )
    base_content = await upstream_repo.read_file(strategy.base_path)
    if base_content is None:
        return None, None, _failed(
            strategy,
            ValidationErrorType.BASE_NOT_FOUND,
            f"无法读取 base: {strategy.base_path}",
        )
    return override_content, base_content, None


async def _directory_differences(strategy, override_repo, upstream_repo) -> Optional[str]:
    """递归比较目录，返回首个差异的描述；完全一致时返回 None"""
    override_files = {
        relative_to(f, strategy.override_path): f
        for f in await override_repo.list_files(strategy.override_path)
    }
    base_files = {
        relative_to(f, strategy.base_path): f
        for f in await upstream_repo.list_files(strategy.base_path)
    }
    missing = sorted(set(base_files) - set(override_files))
    if missing:
        return f"override 缺少文件: {missing[0]}"
    extra = sorted(set(override_files) - set(base_files))
    if extra:
        return f"override 多出文件: {extra[0]}"
    for rel in sorted(base_files):
        override_content = await override_repo.read_file(override_files[rel])
        base_content = await upstream_repo.read_file(base_files[rel])
        if override_content != base_content:
            return f"文件内容不同: {rel}"
    return None


async def _override_copy_of_base(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    override_type = await override_repo.stat(strategy.override_path)
    if override_type == FileType.DIRECTORY:
        difference = await _directory_differences(strategy, override_repo, upstream_repo)
        if difference is not None:
            return _failed(
                strategy,
                ValidationErrorType.OVERRIDE_DIFFERENT_FROM_BASE,
                f"override 目录不是 base 的副本: {difference}",
            )
        return _passed(strategy, f"override 目录与 base 一致: {strategy.base_path}")

    override_content, base_content, failure = await _read_both(
        strategy, override_repo, upstream_repo
    )
    if failure is not None:
        return failure
    if override_content != base_content:
        return _failed(
            strategy,
            ValidationErrorType.OVERRIDE_DIFFERENT_FROM_BASE,
            f"override 不是 base 的逐字节副本: {strategy.base_path}",
        )
    return _passed(strategy, f"override 与 base 一致: {strategy.base_path}")


async def _override_different_from_base(strategy, override_repo, upstream_repo) -> ValidationOutcome:
    override_content, base_content, failure = await _read_both(
        strategy, override_repo, upstream_repo
    )
    if failure is not None:
        return failure
    if override_content == base_content:
        return _failed(
            strategy,
            ValidationErrorType.OVERRIDE_SAME_AS_BASE,
            f"override 与 base 完全相同，本地修改已丢失或冗余: {strategy.base_path}",
        )
    return _passed(strategy, f"override 与 base 不同: {strategy.base_path}")


CheckFunc = Callable[
    [ValidationStrategy, FileRepository, UpstreamRepository], Awaitable[ValidationOutcome]
]

_CHECKS: Dict[ValidationKind, CheckFunc] = {
    ValidationKind.OVERRIDE_FILE_EXISTS: _override_file_exists,
    ValidationKind.OVERRIDE_DIRECTORY_EXISTS: _override_directory_exists,
    ValidationKind.BASE_FILE_EXISTS: _base_file_exists,
    ValidationKind.BASE_DIRECTORY_EXISTS: _base_directory_exists,
    ValidationKind.BASE_UP_TO_DATE: _base_up_to_date,
    ValidationKind.OVERRIDE_COPY_OF_BASE: _override_copy_of_base,
    ValidationKind.OVERRIDE_DIFFERENT_FROM_BASE: _override_different_from_base,
}


async def run_validation(
    strategy: ValidationStrategy,
    override_repo: FileRepository,
    upstream_repo: UpstreamRepository,
) -> ValidationOutcome:
    """
    执行单个校验策略

    Args:
        strategy: 校验策略
        override_repo: downstream 仓库
        upstream_repo: upstream 仓库（当前版本）

    Returns:
        ValidationOutcome
    """
    return await _CHECKS[strategy.kind](strategy, override_repo, upstream_repo)
