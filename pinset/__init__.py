"""pinset - 固定版本包集合的依赖解析与安装"""

__version__ = "0.3.0"
