"""
自定义异常类
Whale Watch 的异常层级，替代通用的 Exception
"""


class WhaleWatchError(Exception):
    """基础异常类"""
    pass


class NodeConnectionError(WhaleWatchError):
    """节点 websocket 连接错误 (断开 / ping 失败 / 未连接)"""
    pass


class RpcError(WhaleWatchError):
    """JSON-RPC 请求返回错误或超时"""

    def __init__(self, message: str, code: int = None):
        super().__init__(message)
        self.code = code


class PriceFetchError(WhaleWatchError):
    """价格获取错误 (网络 / 字段缺失 / 非法数值)"""
    pass


class InvalidThresholdError(WhaleWatchError, ValueError):
    """阈值输入非法 (非数字 / NaN / 无穷大)"""
    pass


class ConfigurationError(WhaleWatchError):
    """配置错误"""
    pass
