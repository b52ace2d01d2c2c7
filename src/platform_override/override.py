"""
override - override 数据模型

override 是 downstream 树相对 upstream 树的一处被跟踪的、有意的差异。
所有变体不可变；"更新" override 不会原地修改，而是通过 create_updated()
由 OverrideFactory 生成新的实例，由调用方替换 manifest 中的旧条目。

变体:
| 变体                   | 对象          | upstream 关联            | 升级         | 额外校验     |
|------------------------|---------------|--------------------------|--------------|--------------|
| PlatformOverride       | 单个文件      | 无                       | 无操作       | 文件存在     |
| CopyOverride           | 单个文件      | base 文件 + 版本 + 哈希  | 重新复制     | 与 base 相同 |
| DerivedOverride        | 单个文件      | base 文件 + 版本 + 哈希  | 三方合并     | 与 base 不同 |
| PatchOverride          | 单个文件      | base 文件 + 版本 + 哈希  | 三方合并     | 与 base 不同 |
| DirectoryCopyOverride  | 目录子树      | base 目录 + 版本 + 哈希  | 递归复制     | 递归相同     |

baseHash 记录的是上次对账时 upstream 内容的哈希（不是 upstream 当前哈希），
校验时与 upstream 当前哈希比较，不一致即表示 override 已过期。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Mapping, Optional, Type, Union

from .errors import AmbiguousRecordError, ManifestFormatError
from .path_utils import is_within_directory, normalize_path, unix_path
from .serialized import (
    LEGACY_ISSUE,
    RECORD_COPY,
    RECORD_DERIVED,
    RECORD_DIRECTORY_COPY,
    RECORD_PATCH,
    RECORD_PLATFORM,
    validate_record,
)
from .upgrade_strategy import UpgradeStrategies, UpgradeStrategy
from .validation_strategy import ValidationStrategies, ValidationStrategy

if TYPE_CHECKING:
    from .override_factory import OverrideFactory

# 跟踪 issue: 整数编号，或历史遗留占位值 LEGACY_ISSUE
Issue = Union[int, str]


class Override(ABC):
    """
    override 统一契约

    所有变体通过同一接口提供名称、范围判断、序列化、升级与校验策略。
    """

    record_kind: ClassVar[str]

    @abstractmethod
    def name(self) -> str:
        """大小写敏感的标识（downstream 文件或目录的规范化路径）"""

    def base_path(self) -> Optional[str]:
        """关联的 upstream 文件或目录；无 upstream 关联时为 None"""
        return None

    @abstractmethod
    def includes_file(self, filename: str) -> bool:
        """override 是否包含给定文件"""

    @abstractmethod
    def serialize(self) -> Dict[str, Any]:
        """转换为 manifest 记录"""

    @abstractmethod
    async def create_updated(self, factory: "OverrideFactory") -> "Override":
        """
        生成相对 upstream 当前快照"已更新"的同类 override

        不修改底层内容，只重新固定 baseVersion/baseHash。

        Raises:
            ResolutionError: factory 无法解析 upstream 文件/目录
        """

    @abstractmethod
    def upgrade_strategy(self) -> UpgradeStrategy:
        """override 的升级算法描述"""

    @abstractmethod
    def validation_strategies(self) -> List[ValidationStrategy]:
        """按稳定顺序返回校验策略"""


def _file_link_validations(
    override_file: str, base_file: str, base_hash: str
) -> List[ValidationStrategy]:
    """文件类 override 共有的校验"""
    return [
        ValidationStrategies.base_file_exists(override_file, base_file),
        ValidationStrategies.override_file_exists(override_file),
        ValidationStrategies.base_up_to_date(override_file, base_file, base_hash),
    ]


def _file_link_record(
    type_tag: str, file: str, base_file: str, base_version: str, base_hash: str
) -> Dict[str, Any]:
    return {
        "type": type_tag,
        "file": unix_path(file),
        "baseFile": unix_path(base_file),
        "baseVersion": base_version,
        "baseHash": base_hash,
    }


@dataclass(frozen=True)
class PlatformOverride(Override):
    """平台 override: 不来源于 upstream 的独立文件"""

    file: str

    record_kind: ClassVar[str] = RECORD_PLATFORM

    def __post_init__(self):
        object.__setattr__(self, "file", normalize_path(self.file))

    @classmethod
    def from_serialized(cls, record: Mapping[str, Any]) -> "PlatformOverride":
        return cls(file=record["file"])

    def serialize(self) -> Dict[str, Any]:
        return {"type": "platform", "file": unix_path(self.file)}

    def name(self) -> str:
        return self.file

    def includes_file(self, filename: str) -> bool:
        return normalize_path(filename) == self.file

    async def create_updated(self, factory: "OverrideFactory") -> Override:
        return await factory.create_platform_override(self.file)

    def upgrade_strategy(self) -> UpgradeStrategy:
        return UpgradeStrategies.assume_up_to_date(self.file)

    def validation_strategies(self) -> List[ValidationStrategy]:
        return [ValidationStrategies.override_file_exists(self.file)]


@dataclass(frozen=True)
class CopyOverride(Override):
    """复制 override: override 文件必须是 base 文件的精确副本"""

    file: str
    base_file: str
    base_version: str
    base_hash: str
    issue: int

    record_kind: ClassVar[str] = RECORD_COPY

    def __post_init__(self):
        object.__setattr__(self, "file", normalize_path(self.file))
        object.__setattr__(self, "base_file", normalize_path(self.base_file))

    @classmethod
    def from_serialized(cls, record: Mapping[str, Any]) -> "CopyOverride":
        return cls(
            file=record["file"],
            base_file=record["baseFile"],
            base_version=record["baseVersion"],
            base_hash=record["baseHash"],
            issue=record["issue"],
        )

    def serialize(self) -> Dict[str, Any]:
        record = _file_link_record(
            "copy", self.file, self.base_file, self.base_version, self.base_hash
        )
        record["issue"] = self.issue
        return record

    def name(self) -> str:
        return self.file

    def base_path(self) -> Optional[str]:
        return self.base_file

    def includes_file(self, filename: str) -> bool:
        return normalize_path(filename) == self.file

    async def create_updated(self, factory: "OverrideFactory") -> Override:
        return await factory.create_copy_override(self.file, self.base_file, self.issue)

    def upgrade_strategy(self) -> UpgradeStrategy:
        return UpgradeStrategies.copy_file(self.file, self.base_file)

    def validation_strategies(self) -> List[ValidationStrategy]:
        return _file_link_validations(self.file, self.base_file, self.base_hash) + [
            ValidationStrategies.override_copy_of_base(self.file, self.base_file),
        ]


@dataclass(frozen=True)
class DerivedOverride(Override):
    """派生 override: 基于 upstream 文件、按设计与之不同的文件"""

    file: str
    base_file: str
    base_version: str
    base_hash: str
    issue: Optional[Issue] = None

    record_kind: ClassVar[str] = RECORD_DERIVED

    def __post_init__(self):
        object.__setattr__(self, "file", normalize_path(self.file))
        object.__setattr__(self, "base_file", normalize_path(self.base_file))

    @classmethod
    def from_serialized(cls, record: Mapping[str, Any]) -> "DerivedOverride":
        return cls(
            file=record["file"],
            base_file=record["baseFile"],
            base_version=record["baseVersion"],
            base_hash=record["baseHash"],
            issue=record.get("issue"),
        )

    def serialize(self) -> Dict[str, Any]:
        record = _file_link_record(
            "derived", self.file, self.base_file, self.base_version, self.base_hash
        )
        if self.issue is not None:
            record["issue"] = self.issue
        return record

    def name(self) -> str:
        return self.file

    def base_path(self) -> Optional[str]:
        return self.base_file

    def includes_file(self, filename: str) -> bool:
        return normalize_path(filename) == self.file

    async def create_updated(self, factory: "OverrideFactory") -> Override:
        return await factory.create_derived_override(self.file, self.base_file, self.issue)

    def upgrade_strategy(self) -> UpgradeStrategy:
        return UpgradeStrategies.three_way_merge(self.file, self.base_file, self.base_version)

    def validation_strategies(self) -> List[ValidationStrategy]:
        return _file_link_validations(self.file, self.base_file, self.base_hash) + [
            ValidationStrategies.override_different_from_base(self.file, self.base_file),
        ]


@dataclass(frozen=True)
class PatchOverride(Override):
    """补丁 override: 对 upstream 文件做少量修改"""

    file: str
    base_file: str
    base_version: str
    base_hash: str
    issue: Issue

    record_kind: ClassVar[str] = RECORD_PATCH

    def __post_init__(self):
        object.__setattr__(self, "file", normalize_path(self.file))
        object.__setattr__(self, "base_file", normalize_path(self.base_file))

    @classmethod
    def from_serialized(cls, record: Mapping[str, Any]) -> "PatchOverride":
        return cls(
            file=record["file"],
            base_file=record["baseFile"],
            base_version=record["baseVersion"],
            base_hash=record["baseHash"],
            issue=record["issue"],
        )

    def serialize(self) -> Dict[str, Any]:
        record = _file_link_record(
            "patch", self.file, self.base_file, self.base_version, self.base_hash
        )
        record["issue"] = self.issue
        return record

    def name(self) -> str:
        return self.file

    def base_path(self) -> Optional[str]:
        return self.base_file

    def includes_file(self, filename: str) -> bool:
        return normalize_path(filename) == self.file

    async def create_updated(self, factory: "OverrideFactory") -> Override:
        return await factory.create_patch_override(self.file, self.base_file, self.issue)

    def upgrade_strategy(self) -> UpgradeStrategy:
        return UpgradeStrategies.three_way_merge(self.file, self.base_file, self.base_version)

    def validation_strategies(self) -> List[ValidationStrategy]:
        return _file_link_validations(self.file, self.base_file, self.base_hash) + [
            ValidationStrategies.override_different_from_base(self.file, self.base_file),
        ]


@dataclass(frozen=True)
class DirectoryCopyOverride(Override):
    """目录复制 override: 从 upstream 目录复制整个子树"""

    directory: str
    base_directory: str
    base_version: str
    base_hash: str
    issue: int

    record_kind: ClassVar[str] = RECORD_DIRECTORY_COPY

    def __post_init__(self):
        object.__setattr__(self, "directory", normalize_path(self.directory))
        object.__setattr__(self, "base_directory", normalize_path(self.base_directory))

    @classmethod
    def from_serialized(cls, record: Mapping[str, Any]) -> "DirectoryCopyOverride":
        return cls(
            directory=record["directory"],
            base_directory=record["baseDirectory"],
            base_version=record["baseVersion"],
            base_hash=record["baseHash"],
            issue=record["issue"],
        )

    def serialize(self) -> Dict[str, Any]:
        return {
            "type": "copy",
            "directory": unix_path(self.directory),
            "baseDirectory": unix_path(self.base_directory),
            "baseVersion": self.base_version,
            "baseHash": self.base_hash,
            "issue": self.issue,
        }

    def name(self) -> str:
        return self.directory

    def base_path(self) -> Optional[str]:
        return self.base_directory

    def includes_file(self, filename: str) -> bool:
        return is_within_directory(filename, self.directory)

    async def create_updated(self, factory: "OverrideFactory") -> Override:
        return await factory.create_directory_copy_override(
            self.directory, self.base_directory, self.issue
        )

    def upgrade_strategy(self) -> UpgradeStrategy:
        return UpgradeStrategies.copy_directory(self.directory, self.base_directory)

    def validation_strategies(self) -> List[ValidationStrategy]:
        return [
            ValidationStrategies.override_directory_exists(self.directory),
            ValidationStrategies.base_directory_exists(self.directory, self.base_directory),
            ValidationStrategies.base_up_to_date(
                self.directory, self.base_directory, self.base_hash
            ),
            ValidationStrategies.override_copy_of_base(self.directory, self.base_directory),
        ]


_VARIANTS_BY_TYPE: Dict[str, Type[Override]] = {
    "platform": PlatformOverride,
    "derived": DerivedOverride,
    "patch": PatchOverride,
}


def _select_variant(record: Mapping[str, Any]) -> Type[Override]:
    """按 type 字段选择变体；copy 再以 directory 字段二次区分"""
    override_type = record.get("type")
    if override_type == "copy":
        if "directory" in record and "file" in record:
            raise AmbiguousRecordError(
                "copy 记录同时包含 file 与 directory，无法确定变体",
                {"record": dict(record)},
            )
        return DirectoryCopyOverride if "directory" in record else CopyOverride

    variant = _VARIANTS_BY_TYPE.get(override_type) if isinstance(override_type, str) else None
    if variant is None:
        raise ManifestFormatError(
            f"未知的 override 类型: {override_type!r}",
            {"record": dict(record), "allowed": ["platform", "copy", "derived", "patch"]},
        )
    return variant


def deserialize_override(record: Any) -> Override:
    """
    由 manifest 记录还原 override

    Raises:
        ManifestFormatError: 记录不是对象、类型未知或字段不符合 schema
        AmbiguousRecordError: copy 记录无法唯一确定变体
    """
    if not isinstance(record, Mapping):
        raise ManifestFormatError(
            f"override 记录必须是对象，实际为 {type(record).__name__}",
            {"record": record},
        )
    variant = _select_variant(record)
    validate_record(record, variant.record_kind)
    return variant.from_serialized(record)


__all__ = [
    "LEGACY_ISSUE",
    "Issue",
    "Override",
    "PlatformOverride",
    "CopyOverride",
    "DerivedOverride",
    "PatchOverride",
    "DirectoryCopyOverride",
    "deserialize_override",
]
