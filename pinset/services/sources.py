"""包源码传输适配器 - Git / 归档下载 / 本地目录

每个适配器实现 Transport 协议: 把 (source, revision) 的源码快照写入
调用方提供的空目录 dest，失败抛 TransportError。dest 的清理与发布
由 PackageFetcher 负责。

- GitTransport: git clone 指定 revision，删除 .git 只保留源码
- ArchiveTransport: 下载 <source>/archive/<revision>.tar.gz（GitHub 风格）
- LocalTransport: 复制本地目录 <source>/<revision>/
- AutoTransport: 按 source 形态分派
"""

from __future__ import annotations

import logging
import re
import shutil
import tarfile
import tempfile
import urllib.error
import urllib.request
from pathlib import Path
from urllib.parse import unquote, urlparse

from pinset.core.exceptions import TransportError, ValidationError
from pinset.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")
_ALLOWED_SCHEMES = frozenset(("http", "https"))
_ARCHIVE_HOSTS = frozenset(("github.com",))


def validate_revision(revision: str) -> None:
    """revision 只允许安全字符，且不能以 '-' 开头（防止被当作 git 选项）"""
    if not _SAFE_REF_RE.match(revision) or revision.startswith("-") or ".." in revision:
        raise ValidationError(f"revision 包含非法字符: {revision}")


def validate_url_scheme(url: str) -> None:
    """下载地址仅允许 http/https"""
    scheme = urlparse(url).scheme
    if scheme not in _ALLOWED_SCHEMES:
        raise ValidationError(f"不允许的 URL 协议 '{scheme}'，仅支持 http/https: {url}")


class GitTransport:
    """Git 仓库来源"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int = 600) -> None:
        self.executor = executor or LocalExecutor()
        self.timeout = timeout

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        validate_revision(revision)
        if source.startswith("-"):
            raise ValidationError(f"source 不能以 '-' 开头: {source}")

        self._clone(source, revision, dest)
        shutil.rmtree(dest / ".git", ignore_errors=True)
        logger.info("Git 就绪: %s@%s -> %s", source, revision, dest)

    def _git(self, args: list[str], cwd: Path | None = None) -> None:
        r = self.executor.execute(
            ["git", *args],
            cwd=str(cwd) if cwd else None,
            timeout=self.timeout,
        )
        if not r.success:
            raise TransportError(f"git {args[0]} 失败 (rc={r.returncode}): {r.tail()}")

    def _clone(self, source: str, revision: str, dest: Path) -> None:
        """浅克隆 tag/分支；失败时回退为完整克隆 + checkout（revision 为 commit 时）"""
        try:
            self._git([
                "clone", "--depth", "1", "--branch", revision,
                "--", source, str(dest),
            ])
            return
        except TransportError as e:
            logger.info("浅克隆失败，回退完整克隆: %s@%s (%s)", source, revision, e)

        for child in list(dest.iterdir()) if dest.exists() else []:
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        self._git(["clone", "--no-checkout", "--", source, str(dest)])
        self._git(["checkout", "--detach", revision], cwd=dest)


class ArchiveTransport:
    """归档下载来源: <source>/archive/<revision>.tar.gz"""

    def __init__(self, timeout: int = 600) -> None:
        self.timeout = timeout

    @staticmethod
    def archive_url(source: str, revision: str) -> str:
        base = source.rstrip("/").removesuffix(".git")
        return f"{base}/archive/{revision}.tar.gz"

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        validate_revision(revision)
        url = self.archive_url(source, revision)
        validate_url_scheme(url)

        fd, tmp = tempfile.mkstemp(suffix=".tar.gz", dir=str(dest.parent))
        tmp_path = Path(tmp)
        try:
            logger.info("  下载: %s", url)
            with open(fd, "wb") as out, urllib.request.urlopen(  # nosec B310
                url, timeout=self.timeout,
            ) as resp:
                shutil.copyfileobj(resp, out)
            self._extract(tmp_path, dest)
        except (urllib.error.URLError, OSError, tarfile.TarError) as e:
            raise TransportError(f"下载失败: {url} - {e}") from e
        finally:
            tmp_path.unlink(missing_ok=True)
        logger.info("归档已解压: %s -> %s", url, dest)

    @staticmethod
    def _extract(archive: Path, dest: Path) -> None:
        """解压归档；若只有一个顶层目录（GitHub 归档的 repo-rev/），将其内容提升一级"""
        with tarfile.open(archive) as tf:
            tf.extractall(path=str(dest), filter="data")  # noqa: S202
        children = list(dest.iterdir())
        if len(children) == 1 and children[0].is_dir():
            top = children[0]
            for item in list(top.iterdir()):
                shutil.move(str(item), str(dest / item.name))
            top.rmdir()


class LocalTransport:
    """本地目录来源: 每个 revision 是 source 下的一个子目录

    相对路径的 source 按显式传入的 base_dir 解析。
    """

    def __init__(self, base_dir: str | Path = ".") -> None:
        self.base_dir = Path(base_dir)

    def locate(self, source: str) -> Path:
        if source.startswith("file://"):
            return Path(unquote(urlparse(source).path))
        p = Path(source).expanduser()
        return p if p.is_absolute() else self.base_dir / p

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        validate_revision(revision)
        snapshot = self.locate(source) / revision
        if not snapshot.is_dir():
            raise TransportError(f"本地快照不存在: {snapshot}")
        try:
            shutil.copytree(snapshot, dest, dirs_exist_ok=True, symlinks=True)
        except (OSError, shutil.Error) as e:
            raise TransportError(f"复制本地快照失败: {snapshot} - {e}") from e
        logger.info("本地快照已复制: %s -> %s", snapshot, dest)


class AutoTransport:
    """按 source 形态分派

    - file:// 或存在的本地目录 -> LocalTransport
    - https://github.com/... -> ArchiveTransport
    - 其他 -> GitTransport
    """

    def __init__(
        self,
        base_dir: str | Path = ".",
        *,
        git: GitTransport | None = None,
        archive: ArchiveTransport | None = None,
        local: LocalTransport | None = None,
        timeout: int = 600,
    ) -> None:
        self.git = git or GitTransport(timeout=timeout)
        self.archive = archive or ArchiveTransport(timeout=timeout)
        self.local = local or LocalTransport(base_dir)

    def select(self, source: str) -> GitTransport | ArchiveTransport | LocalTransport:
        parsed = urlparse(source)
        if parsed.scheme == "file":
            return self.local
        if parsed.scheme in _ALLOWED_SCHEMES and parsed.hostname in _ARCHIVE_HOSTS:
            return self.archive
        if not parsed.scheme and self.local.locate(source).is_dir():
            return self.local
        return self.git

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        self.select(source).fetch(source, revision, dest)


def create_transport(
    kind: str,
    base_dir: str | Path = ".",
    timeout: int = 600,
) -> GitTransport | ArchiveTransport | LocalTransport | AutoTransport:
    """按配置名创建传输层"""
    if kind == "auto":
        return AutoTransport(base_dir, timeout=timeout)
    if kind == "git":
        return GitTransport(timeout=timeout)
    if kind == "archive":
        return ArchiveTransport(timeout=timeout)
    if kind == "local":
        return LocalTransport(base_dir)
    raise ValidationError(f"不支持的传输类型: {kind}")
