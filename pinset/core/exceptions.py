"""统一异常体系

所有业务异常继承 PinsetError，每个子类携带 code 标签。
CLI 层据此输出 "[CODE] 消息"，嵌入方据此区分清单错误、解析错误与拉取错误。

层级:
  PinsetError
  ├── ConfigError
  │   └── ProjectNotFoundError
  ├── ValidationError
  ├── ManifestError
  │   ├── MalformedManifestError
  │   ├── DuplicateNameError
  │   └── ManifestNotFoundError
  ├── ResolutionError
  │   ├── UnknownRootError
  │   └── UnknownDependencyError
  ├── FetchError
  │   ├── TransportFailure
  │   ├── BatchFailure
  │   └── IncompleteInstallError
  └── TransportError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pinset.core.dep.models import CacheKey


class PinsetError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


# =========================================================================
# 配置
# =========================================================================

class ConfigError(PinsetError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ProjectNotFoundError(ConfigError):
    """在起始目录及其所有父目录中都找不到项目文件"""

    code = "PROJECT_NOT_FOUND"

    def __init__(self, filename: str, start: str) -> None:
        super().__init__(
            f"在 {start} 及其父目录中找不到 '{filename}' 文件"
        )
        self.filename = filename
        self.start = start


class ValidationError(PinsetError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# =========================================================================
# 清单解析
# =========================================================================

class ManifestError(PinsetError):
    """包集合清单无法加载"""

    code = "MANIFEST_ERROR"


class MalformedManifestError(ManifestError):
    """清单结构无法解码: 语法错误、缺少字段或字段类型错误"""

    code = "MANIFEST_MALFORMED"

    def __init__(self, message: str, origin: str = "") -> None:
        label = f"{origin}: " if origin else ""
        super().__init__(f"{label}{message}")
        self.origin = origin


class DuplicateNameError(ManifestError):
    code = "MANIFEST_DUPLICATE_NAME"

    def __init__(self, name: str, origin: str = "") -> None:
        label = f"{origin}: " if origin else ""
        super().__init__(f"{label}包名重复: '{name}'")
        self.name = name
        self.origin = origin


class ManifestNotFoundError(ManifestError):
    code = "MANIFEST_NOT_FOUND"

    def __init__(self, path: str) -> None:
        super().__init__(f"清单文件不存在: {path}")
        self.path = path


# =========================================================================
# 依赖解析
# =========================================================================

class ResolutionError(PinsetError):
    """依赖闭包无法计算"""

    code = "RESOLUTION_ERROR"


class UnknownRootError(ResolutionError):
    """项目直接依赖的包不在清单中"""

    code = "UNKNOWN_ROOT"

    def __init__(self, name: str) -> None:
        super().__init__(f"项目依赖的包 '{name}' 不在清单中")
        self.name = name


class UnknownDependencyError(ResolutionError):
    """某个包声明的依赖不在清单中"""

    code = "UNKNOWN_DEPENDENCY"

    def __init__(self, parent: str, missing: str) -> None:
        super().__init__(f"包 '{parent}' 依赖的 '{missing}' 不在清单中")
        self.parent = parent
        self.missing = missing


# =========================================================================
# 拉取
# =========================================================================

class FetchError(PinsetError):
    """包源码拉取失败"""

    code = "FETCH_ERROR"


class TransportFailure(FetchError):
    """单个 (source, revision) 拉取失败，未写入缓存"""

    code = "TRANSPORT_FAILURE"

    def __init__(self, source: str, revision: str, cause: BaseException) -> None:
        super().__init__(f"拉取失败 {source}@{revision}: {cause}")
        self.source = source
        self.revision = revision
        self.cause = cause

    @property
    def key(self) -> CacheKey:
        from pinset.core.dep.models import CacheKey
        return CacheKey(self.source, self.revision)


class BatchFailure(FetchError):
    """批量拉取中至少一个包失败，列出全部失败项"""

    code = "BATCH_FAILURE"

    def __init__(self, failures: dict[str, TransportFailure]) -> None:
        lines = [
            f"  - {name} ({err.source}@{err.revision}): {err.cause}"
            for name, err in sorted(failures.items())
        ]
        super().__init__(
            f"{len(failures)} 个包拉取失败:\n" + "\n".join(lines)
        )
        self.failures = dict(failures)

    @property
    def keys(self) -> list[CacheKey]:
        """去重后的失败缓存键，按 (source, revision) 排序"""
        unique = {err.key for err in self.failures.values()}
        return sorted(unique, key=lambda k: (k.source, k.revision))


class IncompleteInstallError(FetchError):
    """闭包中的包没有对应的安装路径"""

    code = "INCOMPLETE_INSTALL"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"以下包缺少安装路径: {', '.join(missing)}")
        self.missing = missing


class TransportError(PinsetError):
    """传输层（git / 下载 / 本地复制）执行失败"""

    code = "TRANSPORT_ERROR"
