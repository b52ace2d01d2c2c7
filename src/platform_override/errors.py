"""
platform_override.errors - 错误定义模块

定义 override 对账过程中可能抛出的异常类型，统一错误码和错误消息格式。

错误分类:
    (a) 解析错误 (ResolutionError): upstream 或 downstream 路径不存在/不可读
    (b) 过期 (staleness): 不是异常，由校验结果 baseChanged 表达
    (c) 合并冲突 (MergeConflictError): 三方合并无法自动解决，按文件上报
    (d) 不变量违反 (InvariantViolationError): 重复 override、歧义记录、路径越界，
        中止整个 manifest 操作

退出码约定:
    0   - 成功
    1   - 通用错误 (OVERRIDE_ERROR)
    2   - 配置错误 (CONFIG_ERROR)
    4   - 哈希计算错误 (HASHING_ERROR)
    5   - I/O 错误 (IO_ERROR)
    6   - 校验失败 (VALIDATION_FAILED)
    7   - 不变量违反 (INVARIANT_ERROR)
    8   - manifest 格式错误 (MANIFEST_FORMAT_ERROR)
    9   - 解析错误 (RESOLUTION_ERROR)
    10  - 升级错误 (UPGRADE_ERROR)
    11  - 合并冲突 (MERGE_CONFLICT)
"""

from typing import Any, Dict, Optional

# =============================================================================
# 错误码常量（用于报告 reason 字段归一化）
# =============================================================================


class ErrorCode:
    """
    统一错误码常量，用于报告中的 reason/code 字段。

    命名规范:
    - 前缀表示来源/领域: VALIDATION_, UPGRADE_
    - 使用冒号分隔领域和具体错误码
    """

    # -------------------------------------------------------------------------
    # 校验相关
    # -------------------------------------------------------------------------
    VALIDATION_CHECK_ERROR = "validation:check_error"

    # -------------------------------------------------------------------------
    # 升级相关
    # -------------------------------------------------------------------------
    UPGRADE_RESOLUTION_FAILED = "upgrade_failed:resolution_error"
    UPGRADE_MERGE_CONFLICT = "upgrade_failed:merge_conflict"
    UPGRADE_FAILED_GENERIC = "upgrade_failed:override_error"


# =============================================================================
# 退出码
# =============================================================================


class ExitCode:
    """退出码常量"""

    SUCCESS = 0
    OVERRIDE_ERROR = 1
    CONFIG_ERROR = 2
    HASHING_ERROR = 4
    IO_ERROR = 5
    VALIDATION_FAILED = 6
    INVARIANT_ERROR = 7
    MANIFEST_FORMAT_ERROR = 8
    RESOLUTION_ERROR = 9
    UPGRADE_ERROR = 10
    MERGE_CONFLICT = 11


# =============================================================================
# 基础异常类
# =============================================================================


class OverrideError(Exception):
    """platform_override 基础异常类"""

    exit_code: int = ExitCode.OVERRIDE_ERROR
    error_type: str = "OVERRIDE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        转换为可序列化的字典格式

        格式: {ok: false, code: str, message: str, detail: dict}
        """
        return {
            "ok": False,
            "code": self.error_type,
            "message": self.message,
            "detail": self.details,
        }


# =============================================================================
# 配置相关错误 (exit_code = 2)
# =============================================================================


class ConfigError(OverrideError):
    """配置相关错误"""

    exit_code = ExitCode.CONFIG_ERROR
    error_type = "CONFIG_ERROR"


# =============================================================================
# 哈希计算错误 (exit_code = 4)
# =============================================================================


class HashingError(OverrideError):
    """哈希计算错误"""

    exit_code = ExitCode.HASHING_ERROR
    error_type = "HASHING_ERROR"


# =============================================================================
# I/O 相关错误 (exit_code = 5)
# =============================================================================


class OverrideIOError(OverrideError):
    """I/O 相关错误"""

    exit_code = ExitCode.IO_ERROR
    error_type = "IO_ERROR"


class FileReadError(OverrideIOError):
    """文件读取错误"""

    error_type = "FILE_READ_ERROR"


class FileWriteError(OverrideIOError):
    """文件写入错误（暂存或提交阶段）"""

    error_type = "FILE_WRITE_ERROR"


# =============================================================================
# 不变量违反 (exit_code = 7)
# =============================================================================


class InvariantViolationError(OverrideError):
    """
    不变量违反

    属于程序员可见的错误，出现时应中止整个 manifest 操作，
    而不是带着损坏的簿记继续执行。
    """

    exit_code = ExitCode.INVARIANT_ERROR
    error_type = "INVARIANT_VIOLATION"


class DuplicateOverrideError(InvariantViolationError):
    """manifest 中存在同名 override"""

    error_type = "DUPLICATE_OVERRIDE"


class AmbiguousRecordError(InvariantViolationError):
    """共享 wire tag 的记录无法唯一确定变体（如 copy 同时带 file 与 directory）"""

    error_type = "AMBIGUOUS_RECORD"


class PathEscapeError(InvariantViolationError):
    """路径越出所属根目录或目录范围"""

    error_type = "PATH_ESCAPE"


class OverlappingOverridesError(InvariantViolationError):
    """两个 override 声明了重叠的 downstream 路径"""

    error_type = "OVERLAPPING_OVERRIDES"


# =============================================================================
# manifest 格式错误 (exit_code = 8)
# =============================================================================


class ManifestFormatError(OverrideError):
    """manifest 或单条 override 记录格式错误"""

    exit_code = ExitCode.MANIFEST_FORMAT_ERROR
    error_type = "MANIFEST_FORMAT_ERROR"


# =============================================================================
# 解析错误 (exit_code = 9)
# =============================================================================


class ResolutionError(OverrideError):
    """upstream/downstream 路径无法找到或读取"""

    exit_code = ExitCode.RESOLUTION_ERROR
    error_type = "RESOLUTION_ERROR"


class UpstreamResolutionError(ResolutionError):
    """upstream 文件或目录无法解析"""

    error_type = "UPSTREAM_NOT_FOUND"


class OverrideNotFoundError(ResolutionError):
    """downstream override 文件或目录不存在"""

    error_type = "OVERRIDE_NOT_FOUND"


# =============================================================================
# 升级错误 (exit_code = 10 / 11)
# =============================================================================


class UpgradeError(OverrideError):
    """升级过程错误"""

    exit_code = ExitCode.UPGRADE_ERROR
    error_type = "UPGRADE_ERROR"


class MergeConflictError(UpgradeError):
    """三方合并存在无法自动解决的冲突"""

    exit_code = ExitCode.MERGE_CONFLICT
    error_type = "MERGE_CONFLICT"
