"""配置：运行参数 + 各服务商的凭据与模型偏好"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from .storage import StateStore

# 跨页面跳转时保存任务状态用的固定键名
RUN_STATE_KEY = "nano_agent_state"

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20240620",
    "gemini": "gemini-1.5-pro",
}

# 存储里没有 Key 时，回退读取的环境变量
API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "custom": "NANO_CUSTOM_API_KEY",
}


def key_name(provider: str) -> str:
    return f"nano_key_{provider}"


def model_key_name(provider: str) -> str:
    return f"nano_model_{provider}"


@dataclass
class AgentConfig:
    """Agent 运行参数（构造时显式传入，不读全局状态）"""
    provider: str = "openai"
    model: Optional[str] = None
    base_url: Optional[str] = None  # custom 服务商（OpenAI 兼容接口）必填
    max_steps: int = 15
    max_history_messages: int = 10  # 保留的历史轮数（每轮 user + assistant 两条）
    text_limit: int = 150
    step_delay: float = 2.0
    settle_delay: float = 1.0
    scroll_amount: int = 500
    request_timeout: float = 30.0
    max_tokens: int = 4096

    @classmethod
    def from_env(cls, **overrides) -> "AgentConfig":
        """从环境变量（含 .env 文件）读取配置，显式传入的参数优先"""
        load_dotenv()
        config = cls(
            provider=os.getenv("NANO_PROVIDER", cls.provider),
            model=os.getenv("NANO_MODEL") or None,
            base_url=os.getenv("NANO_BASE_URL") or None,
            max_steps=int(os.getenv("NANO_MAX_STEPS", cls.max_steps)),
            max_history_messages=int(os.getenv("NANO_MAX_HISTORY", cls.max_history_messages)),
            text_limit=int(os.getenv("NANO_TEXT_LIMIT", cls.text_limit)),
            step_delay=float(os.getenv("NANO_STEP_DELAY", cls.step_delay)),
            request_timeout=float(os.getenv("NANO_REQUEST_TIMEOUT", cls.request_timeout)),
        )
        for name, value in overrides.items():
            if value is not None:
                setattr(config, name, value)
        return config


def resolve_credentials(store: StateStore, config: AgentConfig) -> Tuple[Optional[str], Optional[str]]:
    """
    返回 (api_key, model)。
    Key 先查存储再查环境变量；模型按 config → 存储偏好 → 默认值 的顺序决定。
    """
    provider = config.provider
    api_key = store.get(key_name(provider)) or os.getenv(API_KEY_ENV.get(provider, ""), "") or None
    model = config.model or store.get(model_key_name(provider)) or DEFAULT_MODELS.get(provider)
    return api_key, model


def save_credentials(store: StateStore, provider: str, api_key: str, model: Optional[str] = None):
    """设置端写入凭据；Agent 主循环只读不写"""
    store.set(key_name(provider), api_key)
    if model:
        store.set(model_key_name(provider), model)
