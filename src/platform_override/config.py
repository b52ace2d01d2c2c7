"""
platform_override 配置管理模块

从环境变量读取配置，并进行必填项校验。

可测试替换:
   - 方式一: 使用 override_config(test_config) 临时替换全局单例
   - 方式二: 测试完成后调用 reset_config() 恢复默认行为
   - 方式三: 在测试中设置环境变量，然后调用 reset_config() + get_config()
   - 方式四: 直接构造 OverrideConfig 实例传入 runner

环境变量:
   必填:
   - PLATFORM_OVERRIDE_MANIFEST: manifest 文件路径
   - PLATFORM_OVERRIDE_ROOT: downstream（override）仓库根目录
   - PLATFORM_OVERRIDE_UPSTREAM_ROOT: upstream 快照根目录（<root>/<version>/...）
   - PLATFORM_OVERRIDE_UPSTREAM_VERSION: upstream 当前版本标签

   可选:
   - PLATFORM_OVERRIDE_ALLOW_CONFLICTS: 升级时写入冲突标记（默认 false）
   - PLATFORM_OVERRIDE_MAX_CONCURRENCY: 最大并发 override 数（默认 8）
   - PLATFORM_OVERRIDE_LOG_LEVEL: 日志级别（默认 INFO）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError

ENV_MANIFEST = "PLATFORM_OVERRIDE_MANIFEST"
ENV_ROOT = "PLATFORM_OVERRIDE_ROOT"
ENV_UPSTREAM_ROOT = "PLATFORM_OVERRIDE_UPSTREAM_ROOT"
ENV_UPSTREAM_VERSION = "PLATFORM_OVERRIDE_UPSTREAM_VERSION"
ENV_ALLOW_CONFLICTS = "PLATFORM_OVERRIDE_ALLOW_CONFLICTS"
ENV_MAX_CONCURRENCY = "PLATFORM_OVERRIDE_MAX_CONCURRENCY"
ENV_LOG_LEVEL = "PLATFORM_OVERRIDE_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no", "")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OverrideConfig:
    """
    override 对账配置

    线程安全: 是（不可变 dataclass）
    """

    manifest_path: str
    override_root: str
    upstream_root: str
    upstream_version: str

    allow_conflicts: bool = False
    max_concurrency: int = 8
    log_level: str = "INFO"


def _get_optional_env(name: str, default: str = "") -> str:
    """获取可选环境变量"""
    return os.environ.get(name, default)


def _parse_bool(name: str, default: str) -> bool:
    value = _get_optional_env(name, default).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(
        f"{name} 必须是布尔值 (true/false/1/0/yes/no)，当前值: {value}",
        {"name": name, "value": value},
    )


def load_config() -> OverrideConfig:
    """
    从环境变量加载配置

    Returns:
        OverrideConfig 配置对象

    Raises:
        ConfigError: 缺少必填环境变量或取值无效
    """
    missing = []

    manifest_path = os.environ.get(ENV_MANIFEST, "")
    if not manifest_path:
        missing.append(f"{ENV_MANIFEST} (manifest 文件路径)")

    override_root = os.environ.get(ENV_ROOT, "")
    if not override_root:
        missing.append(f"{ENV_ROOT} (downstream 仓库根目录)")

    upstream_root = os.environ.get(ENV_UPSTREAM_ROOT, "")
    if not upstream_root:
        missing.append(f"{ENV_UPSTREAM_ROOT} (upstream 快照根目录)")

    upstream_version = os.environ.get(ENV_UPSTREAM_VERSION, "")
    if not upstream_version:
        missing.append(f"{ENV_UPSTREAM_VERSION} (upstream 当前版本)")

    if missing:
        raise ConfigError(
            "缺少必填环境变量:\n  - " + "\n  - ".join(missing),
            {"missing": missing},
        )

    max_concurrency_str = _get_optional_env(ENV_MAX_CONCURRENCY, "8")
    try:
        max_concurrency = int(max_concurrency_str)
    except ValueError:
        raise ConfigError(
            f"{ENV_MAX_CONCURRENCY} 必须是整数，当前值: {max_concurrency_str}",
            {"name": ENV_MAX_CONCURRENCY, "value": max_concurrency_str},
        )
    if max_concurrency < 1:
        raise ConfigError(
            f"{ENV_MAX_CONCURRENCY} 必须大于 0，当前值: {max_concurrency}",
            {"name": ENV_MAX_CONCURRENCY, "value": max_concurrency_str},
        )

    log_level = _get_optional_env(ENV_LOG_LEVEL, "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(
            f"{ENV_LOG_LEVEL} 值无效: {log_level}，应为: {', '.join(_LOG_LEVELS)}",
            {"name": ENV_LOG_LEVEL, "value": log_level},
        )

    return OverrideConfig(
        manifest_path=manifest_path,
        override_root=override_root,
        upstream_root=upstream_root,
        upstream_version=upstream_version,
        allow_conflicts=_parse_bool(ENV_ALLOW_CONFLICTS, "false"),
        max_concurrency=max_concurrency,
        log_level=log_level,
    )


# 全局配置实例（延迟加载）
_config: Optional[OverrideConfig] = None


def get_config() -> OverrideConfig:
    """
    获取全局配置（首次调用时从环境变量加载）

    Raises:
        ConfigError: 配置无效
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """
    重置全局配置

    调用后下次 get_config() 将重新从环境变量加载。
    """
    global _config
    _config = None


def override_config(config: OverrideConfig) -> None:
    """
    替换全局配置（用于测试）

    测试完成后应调用 reset_config() 恢复默认行为。
    """
    global _config
    _config = config


def configure_logging(level: str = "INFO") -> None:
    """按统一格式配置根 logger；根 logger 已有 handler 时只调整级别"""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric_level)
