"""子进程调用抽象

GitTransport 通过 CommandExecutor 协议执行 git，测试时注入假执行器即可，
无需 patch subprocess。
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Protocol

from pinset.core.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def tail(self, limit: int = 300) -> str:
        """stderr 末尾片段，用于错误消息"""
        text = self.stderr.strip() or self.stdout.strip()
        return text[-limit:]


class CommandExecutor(Protocol):
    """命令执行器协议"""

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）

    关闭 git 的交互式凭据提示，避免私有仓库让拉取线程永久挂起。
    """

    def __init__(self, env: dict[str, str] | None = None) -> None:
        self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})}

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        logger.debug("执行: %s (cwd=%s)", " ".join(args), cwd or ".")
        try:
            r = subprocess.run(
                args, capture_output=True, text=True,
                cwd=cwd, env=self._env, check=False, timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportError(f"命令超时（{timeout}秒）: {' '.join(args)}") from e
        except FileNotFoundError as e:
            raise TransportError(f"找不到可执行文件: {args[0]}") from e
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )
