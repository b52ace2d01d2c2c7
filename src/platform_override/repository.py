"""
repository - 文件仓库抽象

提供 override 对账所需的文件系统能力（存在性、读取、列举、暂存提交），
作为可注入的依赖，测试中可替换为内存实现。

仓库类型:
- FileRepository: downstream（override 所在）仓库，可写
- UpstreamRepository: upstream（base）仓库，按版本只读访问

写入约定:
- commit() 先将所有新内容写入同目录的临时文件，再统一 rename 到目标位置
- 暂存阶段失败时不修改任何目标文件
- 落地阶段失败时回滚已落地的文件并恢复原内容，统一抛出 FileWriteError
- 目标路径是目录时在暂存前拒绝
- 临时文件格式: .{原文件名}.{pid}.{随机hex}.tmp
"""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import FileReadError, FileWriteError, PathEscapeError
from .path_utils import is_escaping_path, is_within_directory, normalize_path

logger = logging.getLogger(__name__)

Content = Union[bytes, str]


class FileType(str, Enum):
    """路径类型"""

    FILE = "file"
    DIRECTORY = "directory"
    NONE = "none"


def _checked_path(path: str) -> str:
    """规范化路径并拒绝越出仓库根目录的路径"""
    normalized = normalize_path(path)
    if is_escaping_path(normalized):
        raise PathEscapeError(
            f"路径越出仓库根目录: {path}",
            {"path": path, "normalized": normalized},
        )
    return normalized


def _to_bytes(content: Content) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return content


# =============================================================================
# 抽象接口
# =============================================================================


class FileRepository(ABC):
    """downstream 仓库（override 文件所在）"""

    @abstractmethod
    async def stat(self, path: str) -> FileType:
        """返回路径类型"""

    @abstractmethod
    async def read_file(self, path: str) -> Optional[bytes]:
        """读取文件内容，不存在或不是文件时返回 None"""

    @abstractmethod
    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        """
        列举文件

        Args:
            directory: 仅列举该目录下的文件，None 表示整个仓库

        Returns:
            相对仓库根目录的规范化路径，已排序
        """

    @abstractmethod
    async def commit(
        self, writes: Mapping[str, Content], deletes: Iterable[str] = ()
    ) -> None:
        """
        暂存并提交一组写入/删除

        所有写入先暂存，全部暂存成功后才落地；暂存失败时不修改任何文件。
        """


class UpstreamRepository(ABC):
    """upstream（base）仓库，按版本只读访问"""

    @abstractmethod
    def get_version(self) -> str:
        """当前检出的 upstream 版本标签"""

    @abstractmethod
    async def stat(self, path: str, version: Optional[str] = None) -> FileType:
        """返回指定版本下的路径类型，version 为 None 表示当前版本"""

    @abstractmethod
    async def read_file(self, path: str, version: Optional[str] = None) -> Optional[bytes]:
        """读取指定版本下的文件内容，不存在时返回 None"""

    @abstractmethod
    async def list_files(
        self, directory: Optional[str] = None, version: Optional[str] = None
    ) -> List[str]:
        """列举指定版本下的文件（相对仓库根目录，已排序）"""


# =============================================================================
# 文件系统实现
# =============================================================================


class FilesystemRepository(FileRepository):
    """基于本地目录的仓库"""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        normalized = _checked_path(path)
        if normalized == ".":
            return self.root
        return self.root / normalized

    def _generate_temp_filename(self, target_path: Path) -> Path:
        """生成同目录临时文件名（包含 pid + 随机数）"""
        pid = os.getpid()
        random_hex = secrets.token_hex(8)
        return target_path.parent / f".{target_path.name}.{pid}.{random_hex}.tmp"

    def _stat_sync(self, path: str) -> FileType:
        full_path = self._resolve(path)
        if full_path.is_file():
            return FileType.FILE
        if full_path.is_dir():
            return FileType.DIRECTORY
        return FileType.NONE

    def _read_sync(self, path: str) -> Optional[bytes]:
        full_path = self._resolve(path)
        if not full_path.is_file():
            return None
        try:
            return full_path.read_bytes()
        except OSError as e:
            raise FileReadError(
                f"读取文件失败: {path}",
                {"path": str(full_path), "error": str(e)},
            )

    def _list_sync(self, directory: Optional[str]) -> List[str]:
        base = self._resolve(directory) if directory is not None else self.root
        if not base.is_dir():
            return []
        files = []
        for dirpath, _dirnames, filenames in os.walk(base):
            for filename in filenames:
                rel = Path(dirpath, filename).relative_to(self.root)
                files.append(normalize_path(rel.as_posix()))
        return sorted(files)

    def _discard(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def _commit_sync(self, writes: Mapping[str, Content], deletes: Iterable[str]) -> None:
        deletes = list(deletes)
        for path in [*writes, *deletes]:
            if self._resolve(path).is_dir():
                raise FileWriteError(
                    f"目标是目录，无法覆盖或删除: {path}",
                    {"root": str(self.root), "path": path},
                )

        staged: List[Tuple[Path, Path]] = []
        try:
            for path, content in writes.items():
                target = self._resolve(path)
                target.parent.mkdir(parents=True, exist_ok=True)
                temp_path = self._generate_temp_filename(target)
                staged.append((temp_path, target))
                temp_path.write_bytes(_to_bytes(content))
        except OSError as e:
            self._discard(temp_path for temp_path, _ in staged)
            raise FileWriteError(
                f"暂存写入失败: {e}",
                {"root": str(self.root), "error": str(e)},
            )

        delete_targets = [self._resolve(path) for path in deletes]

        # 暂存全部成功后才开始落地；被覆盖或删除的原文件先移到备份位置
        backups: List[Tuple[Path, Path]] = []
        placed: List[Path] = []
        try:
            for temp_path, target in staged:
                if target.exists():
                    backup = self._generate_temp_filename(target)
                    os.replace(target, backup)
                    backups.append((backup, target))
                os.replace(temp_path, target)
                placed.append(target)
            for target in delete_targets:
                if target.exists():
                    backup = self._generate_temp_filename(target)
                    os.replace(target, backup)
                    backups.append((backup, target))
        except OSError as e:
            self._discard(placed)
            for backup, original in reversed(backups):
                os.replace(backup, original)
            self._discard(temp_path for temp_path, _ in staged)
            logger.error(f"提交失败，已回滚: root={self.root}, error={e}")
            raise FileWriteError(
                f"提交失败，已回滚: {e}",
                {"root": str(self.root), "error": str(e)},
            )

        self._discard(backup for backup, _ in backups)

        logger.debug(
            f"提交完成: root={self.root}, writes={len(staged)}, deletes={len(delete_targets)}"
        )

    async def stat(self, path: str) -> FileType:
        return await asyncio.to_thread(self._stat_sync, path)

    async def read_file(self, path: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read_sync, path)

    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        return await asyncio.to_thread(self._list_sync, directory)

    async def commit(
        self, writes: Mapping[str, Content], deletes: Iterable[str] = ()
    ) -> None:
        await asyncio.to_thread(self._commit_sync, dict(writes), list(deletes))


class SnapshotUpstreamRepository(UpstreamRepository):
    """
    基于快照目录的 upstream 仓库

    目录结构: <root>/<version>/<path>，每个版本标签对应一份完整快照。
    """

    def __init__(self, root: Union[str, Path], current_version: str):
        self.root = Path(root)
        self.current_version = current_version

    def get_version(self) -> str:
        return self.current_version

    def _snapshot(self, version: Optional[str]) -> FilesystemRepository:
        label = _checked_path(version or self.current_version)
        return FilesystemRepository(self.root / label)

    async def stat(self, path: str, version: Optional[str] = None) -> FileType:
        return await self._snapshot(version).stat(path)

    async def read_file(self, path: str, version: Optional[str] = None) -> Optional[bytes]:
        return await self._snapshot(version).read_file(path)

    async def list_files(
        self, directory: Optional[str] = None, version: Optional[str] = None
    ) -> List[str]:
        return await self._snapshot(version).list_files(directory)


# =============================================================================
# 内存实现（测试与预演使用）
# =============================================================================


class InMemoryRepository(FileRepository):
    """内存中的文件树"""

    def __init__(self, files: Optional[Mapping[str, Content]] = None):
        self._files: Dict[str, bytes] = {
            _checked_path(path): _to_bytes(content) for path, content in (files or {}).items()
        }

    @property
    def files(self) -> Dict[str, bytes]:
        """当前文件树的快照副本"""
        return dict(self._files)

    async def stat(self, path: str) -> FileType:
        normalized = _checked_path(path)
        if normalized in self._files:
            return FileType.FILE
        if normalized == ".":
            return FileType.DIRECTORY if self._files else FileType.NONE
        prefix = normalized + "/"
        if any(name.startswith(prefix) for name in self._files):
            return FileType.DIRECTORY
        return FileType.NONE

    async def read_file(self, path: str) -> Optional[bytes]:
        return self._files.get(_checked_path(path))

    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        if directory is None:
            return sorted(self._files)
        normalized = _checked_path(directory)
        return sorted(
            name
            for name in self._files
            if name != normalized and is_within_directory(name, normalized)
        )

    async def commit(
        self, writes: Mapping[str, Content], deletes: Iterable[str] = ()
    ) -> None:
        # 在副本上完成全部修改后整体替换
        updated = dict(self._files)
        for path, content in writes.items():
            updated[_checked_path(path)] = _to_bytes(content)
        for path in deletes:
            updated.pop(_checked_path(path), None)
        self._files = updated


class InMemoryUpstreamRepository(UpstreamRepository):
    """内存中的多版本 upstream 仓库"""

    def __init__(
        self,
        snapshots: Mapping[str, Mapping[str, Content]],
        current_version: str,
    ):
        self._snapshots: Dict[str, InMemoryRepository] = {
            version: InMemoryRepository(files) for version, files in snapshots.items()
        }
        self.current_version = current_version

    def get_version(self) -> str:
        return self.current_version

    def checkout(self, version: str) -> None:
        """切换当前版本（模拟 upstream 前进）"""
        self.current_version = version

    def _snapshot(self, version: Optional[str]) -> InMemoryRepository:
        return self._snapshots.get(version or self.current_version) or InMemoryRepository()

    async def stat(self, path: str, version: Optional[str] = None) -> FileType:
        return await self._snapshot(version).stat(path)

    async def read_file(self, path: str, version: Optional[str] = None) -> Optional[bytes]:
        return await self._snapshot(version).read_file(path)

    async def list_files(
        self, directory: Optional[str] = None, version: Optional[str] = None
    ) -> List[str]:
        return await self._snapshot(version).list_files(directory)
