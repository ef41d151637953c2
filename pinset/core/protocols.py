"""领域协议定义

使用 typing.Protocol 而非 ABC，测试中的假传输层无需继承任何基类。
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class Transport(Protocol):
    """包源码传输协议

    把 (source, revision) 对应的源码快照写入 dest 目录。
    dest 由调用方创建且为空；失败时抛异常即可，dest 的清理由调用方负责。
    同一 (source, revision) 必须得到相同内容。
    """

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        ...
