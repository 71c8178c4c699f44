"""数据模型定义"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union


@dataclass
class ElementSnapshot:
    """单个可交互元素的快照（索引只在本次快照内有效）"""
    index: int
    tag_name: str
    text: str
    role: Optional[str]
    attributes: Dict[str, str]
    is_new: bool
    ref: str  # 页面侧的定位标记（data-nano-ref）

    @property
    def structural_hash(self) -> str:
        return structural_hash(self.tag_name, self.text)


def structural_hash(tag_name: str, text: str) -> str:
    """tag + 截断文本，用于判断元素是否"新出现\""""
    return f"{tag_name.lower()}|{text[:40]}"


# ──────────────────────────────────────────────
# 动作（只能由模型回复解析得到）
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class ClickElement:
    name: ClassVar[str] = "click_element"
    index: int


@dataclass(frozen=True)
class InputText:
    name: ClassVar[str] = "input_text"
    index: int
    text: str


@dataclass(frozen=True)
class Scroll:
    name: ClassVar[str] = "scroll"
    direction: str  # up|down


@dataclass(frozen=True)
class Navigate:
    name: ClassVar[str] = "navigate"
    url: str


@dataclass(frozen=True)
class RequestHelp:
    name: ClassVar[str] = "request_help"
    reason: str


@dataclass(frozen=True)
class Done:
    name: ClassVar[str] = "done"
    answer: str


Action = Union[ClickElement, InputText, Scroll, Navigate, RequestHelp, Done]

ACTION_NAMES = (
    ClickElement.name,
    InputText.name,
    Scroll.name,
    Navigate.name,
    RequestHelp.name,
    Done.name,
)


@dataclass
class Decision:
    """模型输出的结构化决策"""
    thought: str
    action: Action
    raw: Dict[str, Any]  # 解析后的原始 JSON，原样写入历史


# ──────────────────────────────────────────────
# 执行结果与运行状态
# ──────────────────────────────────────────────

class ActionOutcome(str, Enum):
    SUCCESS = "success"
    MISS = "miss"
    BLOCKED = "blocked"


@dataclass
class ActionResult:
    outcome: ActionOutcome
    message: str

    @property
    def ok(self) -> bool:
        return self.outcome is ActionOutcome.SUCCESS


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_NAVIGATION = "awaiting_navigation"


class RunOutcome(str, Enum):
    DONE = "done"
    HELP_REQUESTED = "help_requested"
    STEP_LIMIT = "step_limit"
    STOPPED = "stopped"
    FAILED = "failed"
    NAVIGATING = "navigating"
    BUSY = "busy"


@dataclass
class RunReport:
    """一次任务结束后的汇总（内存中的运行状态此时已被重置）"""
    outcome: RunOutcome
    goal: str
    step_count: int
    history: List[Dict[str, str]] = field(default_factory=list)
    answer: Optional[str] = None
    error: Optional[str] = None
