"""
serialized - manifest 持久化格式与 JSON Schema 校验

记录格式（每个 override 一条，按 type 区分）:
    platform: {type, file}
    copy:     {type, file, baseFile, baseVersion, baseHash, issue}
    copy:     {type, directory, baseDirectory, baseVersion, baseHash, issue}   # 目录复制
    derived:  {type, file, baseFile, baseVersion, baseHash, issue?}
    patch:    {type, file, baseFile, baseVersion, baseHash, issue}

注意: 目录复制与文件复制共用 wire tag "copy"，以是否存在 directory 字段区分。

manifest 文档格式:
    {includePatterns?, excludePatterns?, baseVersion?, overrides: [...]}

所有 schema 均为 additionalProperties: false，未知字段直接报错而不是静默丢弃。
"""

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from .errors import ManifestFormatError

# 历史遗留条目（强制要求 issue 之前就存在的 derived/patch override）使用的占位值
LEGACY_ISSUE = "LEGACY_FIXME"

# 变体 schema 键
RECORD_PLATFORM = "platform"
RECORD_COPY = "copy"
RECORD_DIRECTORY_COPY = "directoryCopy"
RECORD_DERIVED = "derived"
RECORD_PATCH = "patch"

_PATH = {"type": "string", "minLength": 1}
_ISSUE_NUMBER = {"type": "integer", "minimum": 0}
_ISSUE_NUMBER_OR_LEGACY = {"anyOf": [_ISSUE_NUMBER, {"const": LEGACY_ISSUE}]}


def _file_record_schema(type_tag: str, issue_schema: Dict[str, Any], issue_required: bool) -> dict:
    required = ["type", "file", "baseFile", "baseVersion", "baseHash"]
    if issue_required:
        required.append("issue")
    return {
        "type": "object",
        "properties": {
            "type": {"const": type_tag},
            "file": _PATH,
            "baseFile": _PATH,
            "baseVersion": {"type": "string", "minLength": 1},
            "baseHash": {"type": "string", "minLength": 1},
            "issue": issue_schema,
        },
        "required": required,
        "additionalProperties": False,
    }


RECORD_SCHEMAS: Dict[str, dict] = {
    RECORD_PLATFORM: {
        "type": "object",
        "properties": {
            "type": {"const": "platform"},
            "file": _PATH,
        },
        "required": ["type", "file"],
        "additionalProperties": False,
    },
    RECORD_COPY: _file_record_schema("copy", _ISSUE_NUMBER, issue_required=True),
    RECORD_DIRECTORY_COPY: {
        "type": "object",
        "properties": {
            "type": {"const": "copy"},
            "directory": _PATH,
            "baseDirectory": _PATH,
            "baseVersion": {"type": "string", "minLength": 1},
            "baseHash": {"type": "string", "minLength": 1},
            "issue": _ISSUE_NUMBER,
        },
        "required": ["type", "directory", "baseDirectory", "baseVersion", "baseHash", "issue"],
        "additionalProperties": False,
    },
    RECORD_DERIVED: _file_record_schema("derived", _ISSUE_NUMBER_OR_LEGACY, issue_required=False),
    RECORD_PATCH: _file_record_schema("patch", _ISSUE_NUMBER_OR_LEGACY, issue_required=True),
}

MANIFEST_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "includePatterns": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "excludePatterns": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "baseVersion": {"type": "string", "minLength": 1},
        "overrides": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["overrides"],
    "additionalProperties": False,
}

_VALIDATORS: Dict[str, Draft202012Validator] = {
    key: Draft202012Validator(schema) for key, schema in RECORD_SCHEMAS.items()
}
_MANIFEST_VALIDATOR = Draft202012Validator(MANIFEST_SCHEMA)


def _format_errors(validator: Draft202012Validator, data: Any) -> List[str]:
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    messages = []
    for error in errors:
        location = "$" + "".join(f".{p}" if isinstance(p, str) else f"[{p}]" for p in error.absolute_path)
        messages.append(f"{location}: {error.message}")
    return messages


def validate_record(record: Any, record_kind: str) -> None:
    """
    按变体 schema 校验单条 override 记录

    Raises:
        ManifestFormatError: 记录不符合 schema
    """
    messages = _format_errors(_VALIDATORS[record_kind], record)
    if messages:
        raise ManifestFormatError(
            f"override 记录格式错误 ({record_kind}): {messages[0]}",
            {"record": record, "kind": record_kind, "errors": messages},
        )


def validate_manifest_document(document: Any) -> None:
    """
    校验 manifest 文档外层结构（overrides 内的记录由 validate_record 逐条校验）

    Raises:
        ManifestFormatError: 文档不符合 schema
    """
    messages = _format_errors(_MANIFEST_VALIDATOR, document)
    if messages:
        raise ManifestFormatError(
            f"manifest 格式错误: {messages[0]}",
            {"errors": messages},
        )
