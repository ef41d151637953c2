"""包集合清单解析

职责:
- 把 YAML 清单文本解码为 Catalog
- 校验结构、字段类型与包名唯一性
- 应用 overrides 段对已有包的字段覆盖

不检查依赖名是否存在，悬空引用留给 DependencyResolver 在闭包计算时报告。

清单格式（两种顶层形式等价）:

    - name: base
      source: https://github.com/dfinity/motoko-base
      revision: moc-0.10.0
      dependencies: []

    packages:
      - name: base
        repo: https://github.com/dfinity/motoko-base   # source 的别名
        version: moc-0.10.0                             # revision 的别名
        dependencies: []
    overrides:
      base:
        revision: moc-0.11.0
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from pinset.core.dep.models import Catalog, PackageDescriptor
from pinset.core.exceptions import (
    DuplicateNameError,
    MalformedManifestError,
    ManifestNotFoundError,
)
from pinset.utils.yaml_io import parse_yaml, read_text

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "source", "revision", "dependencies")
OPTIONAL_FIELDS = ("path",)
FIELD_ALIASES = {"repo": "source", "version": "revision"}
OVERRIDABLE_FIELDS = ("source", "revision", "dependencies", "path")


class ManifestParser:
    """清单解析器 - 无网络、无文件系统副作用（load 除外）"""

    def __init__(self, origin: str = "<string>") -> None:
        self.origin = origin

    def parse(self, text: str) -> Catalog:
        """解析清单文本，返回 Catalog

        异常:
            MalformedManifestError: 语法错误、缺少字段、字段类型错误
            DuplicateNameError: 两条记录同名
        """
        try:
            data = parse_yaml(text, origin=self.origin)
        except yaml.YAMLError as e:
            raise MalformedManifestError(f"YAML 语法错误: {e}", self.origin) from e
        except ValueError as e:
            raise MalformedManifestError(str(e), self.origin) from e

        records, overrides = self._split_document(data)

        packages: dict[str, PackageDescriptor] = {}
        for index, record in enumerate(records):
            pkg = self._decode_record(record, index)
            if pkg.name in packages:
                raise DuplicateNameError(pkg.name, self.origin)
            packages[pkg.name] = pkg

        for name, fields in overrides.items():
            packages[name] = self._apply_override(packages, name, fields)

        logger.info("已加载 %d 个包 (%s)", len(packages), self.origin)
        return Catalog(packages.values())

    def load(self, path: str | Path) -> Catalog:
        """读取并解析清单文件"""
        p = Path(path)
        if not p.is_file():
            raise ManifestNotFoundError(str(p))
        self.origin = str(p)
        try:
            text = read_text(p)
        except UnicodeDecodeError as e:
            raise MalformedManifestError(f"不是 UTF-8 文本: {e}", self.origin) from e
        except ValueError as e:
            raise MalformedManifestError(str(e), self.origin) from e
        return self.parse(text)

    # ------------------------------------------------------------------
    # 结构解码
    # ------------------------------------------------------------------

    def _split_document(self, data: Any) -> tuple[list[Any], dict[str, Any]]:
        """拆出记录列表与 overrides 段"""
        if data is None:
            return [], {}
        if isinstance(data, list):
            return data, {}
        if not isinstance(data, dict):
            raise self._malformed(
                f"顶层必须是列表或映射 (实际类型: {type(data).__name__})"
            )

        unknown = sorted(set(data) - {"packages", "overrides"})
        if unknown:
            raise self._malformed(f"未知的顶层字段: {', '.join(map(str, unknown))}")

        records = data.get("packages") or []
        if not isinstance(records, list):
            raise self._malformed("packages 必须是列表")
        overrides = data.get("overrides") or {}
        if not isinstance(overrides, dict):
            raise self._malformed("overrides 必须是映射")
        return records, overrides

    def _decode_record(self, record: Any, index: int) -> PackageDescriptor:
        where = f"第 {index + 1} 条记录"
        if not isinstance(record, dict):
            raise self._malformed(f"{where} 必须是映射")

        fields = self._normalize_aliases(record, where)
        if isinstance(fields.get("name"), str) and fields["name"]:
            where = f"包 '{fields['name']}'"

        missing = [f for f in REQUIRED_FIELDS if f not in fields]
        if missing:
            raise self._malformed(f"{where} 缺少字段: {', '.join(missing)}")

        extra = sorted(set(fields) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS))
        if extra:
            logger.warning("%s 含未知字段，已忽略: %s", where, ", ".join(map(str, extra)))

        return PackageDescriptor(
            name=self._require_str(fields, "name", where),
            source=self._require_str(fields, "source", where),
            revision=self._require_str(fields, "revision", where),
            dependencies=self._require_names(fields["dependencies"], where),
            path=self._optional_str(fields, "path", where),
        )

    def _normalize_aliases(self, record: dict[str, Any], where: str) -> dict[str, Any]:
        fields = dict(record)
        for alias, canonical in FIELD_ALIASES.items():
            if alias not in fields:
                continue
            if canonical in fields:
                raise self._malformed(f"{where} 同时给出了 {canonical} 与别名 {alias}")
            fields[canonical] = fields.pop(alias)
        return fields

    def _apply_override(
        self,
        packages: dict[str, PackageDescriptor],
        name: Any,
        fields: Any,
    ) -> PackageDescriptor:
        if name not in packages:
            raise self._malformed(f"overrides 指向不存在的包: '{name}'")
        where = f"overrides.{name}"
        if not isinstance(fields, dict):
            raise self._malformed(f"{where} 必须是映射")
        fields = self._normalize_aliases(fields, where)
        unknown = sorted(set(fields) - set(OVERRIDABLE_FIELDS))
        if unknown:
            raise self._malformed(f"{where} 含不可覆盖的字段: {', '.join(map(str, unknown))}")

        changes: dict[str, Any] = {}
        for key in ("source", "revision"):
            if key in fields:
                changes[key] = self._require_str(fields, key, where)
        if "path" in fields:
            changes["path"] = self._optional_str(fields, "path", where)
        if "dependencies" in fields:
            changes["dependencies"] = self._require_names(fields["dependencies"], where)
        logger.info("覆盖包 %s: %s", name, ", ".join(changes))
        return replace(packages[name], **changes)

    # ------------------------------------------------------------------
    # 字段校验
    # ------------------------------------------------------------------

    def _require_str(self, fields: dict[str, Any], key: str, where: str) -> str:
        value = fields.get(key)
        if not isinstance(value, str):
            raise self._malformed(
                f"{where} 的 {key} 必须是字符串 (实际类型: {type(value).__name__})"
            )
        if not value.strip():
            raise self._malformed(f"{where} 的 {key} 不能为空")
        return value.strip()

    def _optional_str(self, fields: dict[str, Any], key: str, where: str) -> str:
        value = fields.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise self._malformed(
                f"{where} 的 {key} 必须是字符串 (实际类型: {type(value).__name__})"
            )
        return value.strip()

    def _require_names(self, value: Any, where: str) -> tuple[str, ...]:
        if not isinstance(value, list):
            raise self._malformed(
                f"{where} 的 dependencies 必须是列表 (实际类型: {type(value).__name__})"
            )
        for item in value:
            if not isinstance(item, str) or not item.strip():
                raise self._malformed(f"{where} 的 dependencies 含非法包名: {item!r}")
        return tuple(item.strip() for item in value)

    def _malformed(self, message: str) -> MalformedManifestError:
        return MalformedManifestError(message, self.origin)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    @staticmethod
    def list_packages(catalog: Catalog) -> list[dict[str, str]]:
        """格式化包列表用于展示"""
        results = []
        for p in catalog.values():
            info: dict[str, str] = {
                "name": p.name,
                "source": p.source,
                "revision": p.revision,
                "dependencies": ", ".join(p.dependencies),
            }
            if p.path:
                info["path"] = p.path
            results.append(info)
        return results


def parse_manifest(text: str, origin: str = "<string>") -> Catalog:
    """解析清单文本"""
    return ManifestParser(origin).parse(text)


def load_manifest(path: str | Path) -> Catalog:
    """读取并解析清单文件"""
    return ManifestParser(str(path)).load(path)
