"""
platform_override - 平台 override 对账模块

维护 downstream 仓库中对 upstream 文件的 override 清单，提供：
- override: 五种 override 变体（platform/copy/derived/patch/directory copy）
- manifest: override 集合的持久化容器
- reconcile: 批量校验与升级（过期检测、复制、三方合并）
"""

__version__ = "0.1.0"

from platform_override.errors import OverrideError
from platform_override.manifest import Manifest, read_manifest, write_manifest
from platform_override.override import (
    CopyOverride,
    DerivedOverride,
    DirectoryCopyOverride,
    Override,
    PatchOverride,
    PlatformOverride,
    deserialize_override,
)
from platform_override.override_factory import OverrideFactory, RepositoryOverrideFactory
from platform_override.reconcile import upgrade_manifest, validate_manifest

__all__ = [
    "Override",
    "PlatformOverride",
    "CopyOverride",
    "DerivedOverride",
    "PatchOverride",
    "DirectoryCopyOverride",
    "deserialize_override",
    "Manifest",
    "read_manifest",
    "write_manifest",
    "OverrideFactory",
    "RepositoryOverrideFactory",
    "validate_manifest",
    "upgrade_manifest",
    "OverrideError",
    "__version__",
]
