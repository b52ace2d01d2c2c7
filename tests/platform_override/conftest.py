# -*- coding: utf-8 -*-
"""
pytest 共享 fixtures

提供:
- 两个版本的内存 upstream 仓库（1.0 / 2.0）
- 内存 downstream 仓库（各类 override 已就位）
- 基于内存 upstream 的 RepositoryOverrideFactory
- 对应的已固定（pinned）override 实例

upstream 1.0 -> 2.0 的变化:
- lib/copy.js: 内容变化
- lib/derived.js: 第三行变化（与 override 的修改互不重叠）
- lib/patch.js: 不变
- lib/conflict.js: 与 override 修改同一行
- vendor/: 修改 a.txt，删除 old.txt，新增 new.txt
"""

import pytest

from platform_override.hashing import hash_content, hash_tree
from platform_override.override import (
    CopyOverride,
    DerivedOverride,
    DirectoryCopyOverride,
    PatchOverride,
    PlatformOverride,
)
from platform_override.override_factory import RepositoryOverrideFactory
from platform_override.repository import InMemoryRepository, InMemoryUpstreamRepository

V1 = "1.0"
V2 = "2.0"

UPSTREAM_V1 = {
    "lib/copy.js": "module.exports = 1;\n",
    "lib/derived.js": "line one\nline two\nline three\n",
    "lib/patch.js": "const a = 1;\nconst b = 2;\n",
    "lib/conflict.js": "foo\n",
    "vendor/a.txt": "a v1\n",
    "vendor/old.txt": "old\n",
    "vendor/sub/b.txt": "b\n",
}

UPSTREAM_V2 = {
    "lib/copy.js": "module.exports = 2;\n",
    "lib/derived.js": "line one\nline two\nline THREE\n",
    "lib/patch.js": "const a = 1;\nconst b = 2;\n",
    "lib/conflict.js": "baz\n",
    "vendor/a.txt": "a v2\n",
    "vendor/new.txt": "new\n",
    "vendor/sub/b.txt": "b\n",
}

DOWNSTREAM = {
    "platform/only.js": "platform specific\n",
    "src/copy.js": UPSTREAM_V1["lib/copy.js"],
    "src/derived.js": "line ONE\nline two\nline three\n",
    "src/patch.js": "const a = 1;\nconst b = 3;\n",
    "src/conflict.js": "bar\n",
    "third_party/a.txt": UPSTREAM_V1["vendor/a.txt"],
    "third_party/old.txt": UPSTREAM_V1["vendor/old.txt"],
    "third_party/sub/b.txt": UPSTREAM_V1["vendor/sub/b.txt"],
}


def file_hash(text: str) -> str:
    """文件内容哈希（与 hash_file_or_directory 一致）"""
    return hash_content(text.encode("utf-8"))


@pytest.fixture
def upstream_repo() -> InMemoryUpstreamRepository:
    """当前版本为 1.0 的 upstream"""
    return InMemoryUpstreamRepository({V1: UPSTREAM_V1, V2: UPSTREAM_V2}, current_version=V1)


@pytest.fixture
def override_repo() -> InMemoryRepository:
    return InMemoryRepository(DOWNSTREAM)


@pytest.fixture
def factory(upstream_repo) -> RepositoryOverrideFactory:
    return RepositoryOverrideFactory(upstream_repo)


@pytest.fixture
def platform_override() -> PlatformOverride:
    return PlatformOverride(file="platform/only.js")


@pytest.fixture
def copy_override() -> CopyOverride:
    return CopyOverride(
        file="src/copy.js",
        base_file="lib/copy.js",
        base_version=V1,
        base_hash=file_hash(UPSTREAM_V1["lib/copy.js"]),
        issue=101,
    )


@pytest.fixture
def derived_override() -> DerivedOverride:
    return DerivedOverride(
        file="src/derived.js",
        base_file="lib/derived.js",
        base_version=V1,
        base_hash=file_hash(UPSTREAM_V1["lib/derived.js"]),
    )


@pytest.fixture
def patch_override() -> PatchOverride:
    return PatchOverride(
        file="src/patch.js",
        base_file="lib/patch.js",
        base_version=V1,
        base_hash=file_hash(UPSTREAM_V1["lib/patch.js"]),
        issue=202,
    )


@pytest.fixture
def conflict_override() -> PatchOverride:
    return PatchOverride(
        file="src/conflict.js",
        base_file="lib/conflict.js",
        base_version=V1,
        base_hash=file_hash(UPSTREAM_V1["lib/conflict.js"]),
        issue=303,
    )


def tree_hash(files, directory: str) -> str:
    """目录哈希（与 hash_file_or_directory 一致）"""
    prefix = directory + "/"
    return hash_tree(
        (path[len(prefix):], content.encode("utf-8"))
        for path, content in files.items()
        if path.startswith(prefix)
    )


@pytest.fixture
def directory_override() -> DirectoryCopyOverride:
    return DirectoryCopyOverride(
        directory="third_party",
        base_directory="vendor",
        base_version=V1,
        base_hash=tree_hash(UPSTREAM_V1, "vendor"),
        issue=404,
    )


@pytest.fixture
def all_overrides(
    platform_override,
    copy_override,
    derived_override,
    patch_override,
    conflict_override,
    directory_override,
):
    return [
        platform_override,
        copy_override,
        derived_override,
        patch_override,
        conflict_override,
        directory_override,
    ]
