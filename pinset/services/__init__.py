"""服务层: 包源码拉取适配器"""
