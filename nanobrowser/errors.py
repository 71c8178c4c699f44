"""异常定义

致命错误（对本次任务而言）都继承自 AgentError，由主循环统一捕获；
元素找不到、URL 被拦截等可恢复情况用 ActionResult 表示，不走异常。
"""

from typing import Optional


class AgentError(Exception):
    """所有任务级错误的基类"""


class ConfigError(AgentError):
    """配置缺失或无效"""


class MissingCredential(ConfigError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"未找到 {provider} 的 API Key，请先配置（--set-key 或环境变量）")


class ProviderError(AgentError):
    """调用 LLM 服务商失败"""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class HttpStatusError(ProviderError):
    def __init__(self, provider: str, code: int, body: str = ""):
        self.code = code
        self.body = body[:300]
        super().__init__(f"{provider} 返回 HTTP {code}: {self.body}", provider)


class RequestTimeout(ProviderError):
    pass


class NetworkError(ProviderError):
    pass


class EmptyResponse(ProviderError):
    pass


class ParseError(ProviderError):
    def __init__(self, provider: str, excerpt: str, reason: str = ""):
        self.excerpt = excerpt[:200]
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"无法解析 {provider or 'LLM'} 的回复{detail}: {self.excerpt!r}", provider)


class PageError(AgentError):
    """浏览器页面不可用（执行上下文被销毁、等待加载超时等）"""
