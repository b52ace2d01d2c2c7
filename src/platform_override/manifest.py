"""
manifest - override 集合的持久化容器

manifest 独占全部 override 实例（按名称查找，插入顺序无关）。
override 本身不可变，manifest 是唯一的可变容器，仅以整条替换的方式更新。

文件格式（JSON，2 空格缩进，UTF-8，尾换行）:
    {
      "includePatterns": ["**/*.js"],      # 可选，参与"未登记文件"检查的文件
      "excludePatterns": ["**/*.md"],      # 可选
      "baseVersion": "0.62.0",             # 可选，manifest 整体对应的 upstream 版本
      "overrides": [ {...}, ... ]          # 按名称排序输出
    }
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .errors import (
    DuplicateOverrideError,
    FileReadError,
    FileWriteError,
    InvariantViolationError,
    ManifestFormatError,
    OverlappingOverridesError,
    PathEscapeError,
)
from .override import Override, deserialize_override
from .path_utils import is_escaping_path, normalize_path
from .repository import FileRepository
from .serialized import validate_manifest_document

logger = logging.getLogger(__name__)


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in patterns)


def _checked_name(override: Override) -> str:
    """返回 override 名称；名称或 base 路径越出各自根目录时拒绝"""
    name = override.name()
    if is_escaping_path(name):
        raise PathEscapeError(
            f"override 名称越出根目录: {name}",
            {"override": name},
        )
    base_path = override.base_path()
    if base_path is not None and is_escaping_path(base_path):
        raise PathEscapeError(
            f"override 的 base 路径越出 upstream 根目录: {base_path}",
            {"override": name, "base": base_path},
        )
    return name


class Manifest:
    """override 集合"""

    def __init__(
        self,
        overrides: Iterable[Override] = (),
        include_patterns: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        base_version: Optional[str] = None,
    ):
        self.include_patterns: List[str] = list(include_patterns or [])
        self.exclude_patterns: List[str] = list(exclude_patterns or [])
        self.base_version = base_version
        self._overrides: Dict[str, Override] = {}
        for override in overrides:
            self.add_override(override)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._overrides)

    def __contains__(self, name: str) -> bool:
        return self.has_override(name)

    def has_override(self, name: str) -> bool:
        return normalize_path(name) in self._overrides

    def find_override(self, name: str) -> Optional[Override]:
        return self._overrides.get(normalize_path(name))

    def find_override_for_file(self, filename: str) -> Optional[Override]:
        """返回包含给定文件的 override（文件名相等或位于目录 override 之下）"""
        for override in self._overrides.values():
            if override.includes_file(filename):
                return override
        return None

    def list_overrides(self) -> List[Override]:
        """按名称排序返回全部 override"""
        return [self._overrides[name] for name in sorted(self._overrides)]

    # ------------------------------------------------------------------
    # 修改（整条增删替换）
    # ------------------------------------------------------------------

    def add_override(self, override: Override) -> None:
        """
        登记新的 override

        Raises:
            PathEscapeError: 名称越出 downstream 根目录，或 base 路径越出 upstream 根目录
            DuplicateOverrideError: 同名 override 已存在
        """
        name = _checked_name(override)
        if name in self._overrides:
            raise DuplicateOverrideError(
                f"override 已存在: {name}",
                {"override": name},
            )
        self._overrides[name] = override

    def remove_override(self, name: str) -> bool:
        """显式移除 override，返回是否存在并被移除"""
        return self._overrides.pop(normalize_path(name), None) is not None

    def replace_override(self, override: Override) -> None:
        """
        以新实例整条替换同名 override

        Raises:
            PathEscapeError: 新实例的名称或 base 路径越出根目录
            InvariantViolationError: 同名 override 不存在
        """
        name = _checked_name(override)
        if name not in self._overrides:
            raise InvariantViolationError(
                f"无法替换不存在的 override: {name}",
                {"override": name},
            )
        self._overrides[name] = override

    async def mark_up_to_date(self, name: str, factory) -> Override:
        """
        通过 factory 重新固定 override，并替换 manifest 中的条目

        Returns:
            新的 override 实例
        """
        current = self.find_override(name)
        if current is None:
            raise InvariantViolationError(
                f"override 不存在: {name}",
                {"override": name},
            )
        updated = await current.create_updated(factory)
        self.replace_override(updated)
        return updated

    # ------------------------------------------------------------------
    # 不变量
    # ------------------------------------------------------------------

    def check_disjoint(self) -> None:
        """
        校验各 override 声明的 downstream 范围互不重叠

        Raises:
            OverlappingOverridesError: 某个 override 落在另一个 override 的范围内
        """
        overrides = self.list_overrides()
        for outer in overrides:
            for inner in overrides:
                if outer is inner:
                    continue
                if outer.includes_file(inner.name()):
                    raise OverlappingOverridesError(
                        f"override 范围重叠: {inner.name()} 位于 {outer.name()} 之内",
                        {"outer": outer.name(), "inner": inner.name()},
                    )

    async def untracked_files(
        self, override_repo: FileRepository, ignore: Sequence[str] = ()
    ) -> List[str]:
        """
        列出 downstream 中符合 include/exclude 规则但未被任何 override 包含的文件

        Args:
            override_repo: downstream 仓库
            ignore: 额外忽略的路径（如 manifest 文件本身）
        """
        ignored = {normalize_path(p) for p in ignore}
        untracked = []
        for file in await override_repo.list_files():
            if file in ignored:
                continue
            if self.include_patterns and not _matches_any(file, self.include_patterns):
                continue
            if _matches_any(file, self.exclude_patterns):
                continue
            if self.find_override_for_file(file) is None:
                untracked.append(file)
        return untracked

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    def serialize(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        if self.include_patterns:
            document["includePatterns"] = list(self.include_patterns)
        if self.exclude_patterns:
            document["excludePatterns"] = list(self.exclude_patterns)
        if self.base_version:
            document["baseVersion"] = self.base_version
        document["overrides"] = [override.serialize() for override in self.list_overrides()]
        return document

    @classmethod
    def from_serialized(cls, document: Any) -> "Manifest":
        """
        由 manifest 文档还原

        Raises:
            ManifestFormatError: 文档或其中任一记录格式错误（附带记录下标）
            InvariantViolationError: 重复名称、歧义记录、路径越界
        """
        validate_manifest_document(document)
        overrides = []
        for index, record in enumerate(document["overrides"]):
            try:
                overrides.append(deserialize_override(record))
            except (ManifestFormatError, InvariantViolationError) as e:
                e.details.setdefault("index", index)
                raise
        return cls(
            overrides,
            include_patterns=document.get("includePatterns"),
            exclude_patterns=document.get("excludePatterns"),
            base_version=document.get("baseVersion"),
        )


# =============================================================================
# 文件读写
# =============================================================================


def read_manifest(path: Union[str, Path]) -> Manifest:
    """
    读取 manifest 文件

    Raises:
        FileReadError: 文件不存在或无法读取
        ManifestFormatError: JSON 解析失败或格式错误
    """
    manifest_path = Path(path)
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise FileReadError(
            f"读取 manifest 失败: {manifest_path}",
            {"path": str(manifest_path), "error": str(e)},
        )
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestFormatError(
            f"manifest 不是合法 JSON: {e}",
            {"path": str(manifest_path), "line": e.lineno, "column": e.colno},
        )
    manifest = Manifest.from_serialized(document)
    logger.debug(f"已读取 manifest: {manifest_path}, overrides={len(manifest)}")
    return manifest


def write_manifest(path: Union[str, Path], manifest: Manifest) -> None:
    """
    写入 manifest 文件（同目录临时文件 + os.replace）

    Raises:
        FileWriteError: 写入失败
    """
    manifest_path = Path(path)
    json_str = json.dumps(manifest.serialize(), indent=2, ensure_ascii=False)
    temp_path = manifest_path.parent / (
        f".{manifest_path.name}.{os.getpid()}.{secrets.token_hex(8)}.tmp"
    )
    try:
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(json_str)
            f.write("\n")
        os.replace(temp_path, manifest_path)
    except OSError as e:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise FileWriteError(
            f"写入 manifest 失败: {manifest_path}",
            {"path": str(manifest_path), "error": str(e)},
        )
    logger.info(f"已写入 manifest: {manifest_path}, overrides={len(manifest)}")
