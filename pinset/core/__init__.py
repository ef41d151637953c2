"""核心层: 配置、异常、依赖解析与安装"""
