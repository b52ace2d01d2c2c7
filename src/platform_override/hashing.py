"""
platform_override.hashing - 哈希计算工具模块

提供文件内容与目录子树的内容哈希，用于记录/比较 override 的 baseHash。

约定:
- 哈希前将 CRLF 统一为 LF，不同换行风格的检出不会被判定为 upstream 变化
- 目录哈希覆盖子树内全部文件的 (相对路径, 内容哈希)，按路径排序
"""

import hashlib
from typing import Iterable, Optional, Tuple

from .errors import HashingError
from .path_utils import relative_to
from .repository import FileType, UpstreamRepository

# 默认哈希算法
DEFAULT_ALGORITHM = "sha256"


def normalize_eol(data: bytes) -> bytes:
    """将 CRLF 换行统一为 LF"""
    return data.replace(b"\r\n", b"\n")


def hash_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """
    计算字节数据的哈希值

    Args:
        data: 字节数据
        algorithm: 哈希算法（sha256, sha1, md5 等）

    Returns:
        十六进制哈希字符串
    """
    try:
        hasher = hashlib.new(algorithm)
    except ValueError as e:
        raise HashingError(
            f"不支持的哈希算法: {algorithm}",
            {"algorithm": algorithm, "error": str(e)},
        )
    hasher.update(data)
    return hasher.hexdigest()


def hash_content(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """计算文件内容哈希（换行归一化后）"""
    return hash_bytes(normalize_eol(data), algorithm)


def hash_tree(
    entries: Iterable[Tuple[str, bytes]], algorithm: str = DEFAULT_ALGORITHM
) -> str:
    """
    计算目录子树哈希

    Args:
        entries: (相对目录的路径, 文件内容)，顺序无关
        algorithm: 哈希算法

    Returns:
        十六进制哈希字符串
    """
    try:
        hasher = hashlib.new(algorithm)
    except ValueError as e:
        raise HashingError(
            f"不支持的哈希算法: {algorithm}",
            {"algorithm": algorithm, "error": str(e)},
        )
    for rel, content in sorted(entries, key=lambda entry: entry[0]):
        hasher.update(rel.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(hash_content(content, algorithm).encode("ascii"))
        hasher.update(b"\n")
    return hasher.hexdigest()


async def hash_file_or_directory(
    repo: UpstreamRepository,
    path: str,
    version: Optional[str] = None,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Optional[str]:
    """
    计算 upstream 中文件或目录的内容哈希

    Args:
        repo: upstream 仓库
        path: 文件或目录路径
        version: 版本标签，None 表示当前版本
        algorithm: 哈希算法

    Returns:
        十六进制哈希字符串；路径不存在时返回 None

    Raises:
        HashingError: 列举到的文件无法读取时
    """
    file_type = await repo.stat(path, version)
    if file_type == FileType.NONE:
        return None

    if file_type == FileType.FILE:
        content = await repo.read_file(path, version)
        if content is None:
            raise HashingError(f"读取文件失败: {path}", {"path": path, "version": version})
        return hash_content(content, algorithm)

    entries = []
    for file in await repo.list_files(path, version):
        content = await repo.read_file(file, version)
        if content is None:
            raise HashingError(f"读取文件失败: {file}", {"path": file, "version": version})
        entries.append((relative_to(file, path), content))
    return hash_tree(entries, algorithm)
