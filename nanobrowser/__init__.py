"""nanobrowser 自主网页智能体

包含各个模块：
- guardrails: 提示词注入防护
- perception: 感知模块
- providers / parsing: 服务商适配与回复解析
- planner: 规划模块
- controller: 执行模块
- memory: 对话历史
- core: 核心 Agent 类（状态机）
- runner: 页面生命周期驱动
"""

from .config import AgentConfig
from .controller import Controller
from .core import NanoAgent
from .memory import Memory
from .models import (
    ActionOutcome,
    ActionResult,
    AgentStatus,
    Decision,
    ElementSnapshot,
    RunOutcome,
    RunReport,
)
from .perception import Perception
from .planner import Planner
from .guardrails import sanitize
from .storage import JsonFileStore, MemoryStore

__all__ = [
    "AgentConfig",
    "Controller",
    "NanoAgent",
    "Memory",
    "ActionOutcome",
    "ActionResult",
    "AgentStatus",
    "Decision",
    "ElementSnapshot",
    "RunOutcome",
    "RunReport",
    "Perception",
    "Planner",
    "sanitize",
    "JsonFileStore",
    "MemoryStore",
]
