"""
path_utils - 路径规范化纯函数模块

所有 override 名称、base 路径均以 "/" 分隔的相对路径形式存储与比较，
与运行平台的分隔符无关。规范化形式同时也是序列化形式，保证名称可逐字节往返。
"""

import posixpath
from typing import List


def normalize_path(path: str) -> str:
    """
    规范化路径，得到稳定的比较键

    - 将 "\\" 统一为 "/"
    - 折叠 "."、".." 与重复分隔符
    - 保留大小写

    Args:
        path: 原始路径

    Returns:
        规范化后的路径

    Raises:
        ValueError: 路径为空
    """
    if not path:
        raise ValueError("路径不能为空")
    return posixpath.normpath(path.replace("\\", "/"))


def unix_path(path: str) -> str:
    """返回路径的序列化形式（"/" 分隔）"""
    return normalize_path(path)


def split_segments(path: str) -> List[str]:
    """将规范化路径拆分为各级路径段"""
    normalized = normalize_path(path)
    if normalized == ".":
        return []
    return [seg for seg in normalized.split("/") if seg]


def is_escaping_path(path: str) -> bool:
    """
    判断路径是否越出其根目录

    绝对路径或首段为 ".." 的路径视为越界。
    """
    normalized = normalize_path(path)
    if posixpath.isabs(normalized):
        return True
    segments = split_segments(normalized)
    return bool(segments) and segments[0] == ".."


def relative_to(path: str, directory: str) -> str:
    """
    计算 path 相对 directory 的规范化相对路径

    结果首段为 ".." 表示 path 不在 directory 内。
    """
    return posixpath.relpath(normalize_path(path), normalize_path(directory))


def is_within_directory(path: str, directory: str) -> bool:
    """判断 path 规范化后是否等于或位于 directory 之下"""
    norm_path = normalize_path(path)
    norm_dir = normalize_path(directory)
    # 一方绝对一方相对时 relpath 会借助 cwd 计算，直接判否
    if posixpath.isabs(norm_path) != posixpath.isabs(norm_dir):
        return False
    rel = relative_to(norm_path, norm_dir)
    return split_segments(rel)[:1] != [".."]


def join_path(directory: str, relative: str) -> str:
    """拼接目录与相对路径并规范化"""
    return normalize_path(posixpath.join(normalize_path(directory), relative))
