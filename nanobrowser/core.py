"""Web 自动化智能体核心类：感知 → 规划 → 执行 的主循环"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx
from playwright.async_api import Error as PlaywrightError

from .config import RUN_STATE_KEY, AgentConfig
from .controller import Controller
from .errors import AgentError
from .guardrails import is_safe_url
from .memory import Memory
from .models import Action, AgentStatus, Done, Navigate, RequestHelp, RunOutcome, RunReport
from .page import PageAccessor
from .perception import Perception
from .planner import Planner, build_user_prompt
from .storage import StateStore
from .ui import AgentUI, ConsoleUI

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """一次任务的运行状态"""
    goal: str
    step_count: int = 0
    memory: Memory = field(default_factory=Memory)
    is_running: bool = False
    is_restoring: bool = False

    def to_record(self) -> str:
        return json.dumps(
            {"goal": self.goal, "stepCount": self.step_count, "history": self.memory.as_messages()},
            ensure_ascii=False,
        )

    @classmethod
    def from_record(cls, record: Any, max_pairs: int) -> "RunState":
        data: Dict[str, Any] = json.loads(record) if isinstance(record, str) else dict(record)
        goal = data["goal"]
        if not isinstance(goal, str) or not goal:
            raise ValueError("goal 为空")
        return cls(
            goal=goal,
            step_count=int(data.get("stepCount", 0)),
            memory=Memory(max_pairs, data.get("history") or []),
        )


def describe(action: Action) -> str:
    args = ", ".join(f"{k}={v!r}" for k, v in asdict(action).items())
    return f"{action.name}({args})"


class NanoAgent:
    """
    Web 自动化智能体。

    一个实例对应一次页面加载：构造时如果存储里有跳转前保存的任务，会立刻取出并清除
    （最多恢复一次），之后调用 resume() 继续执行。
    """

    def __init__(
        self,
        config: AgentConfig,
        page: PageAccessor,
        store: StateStore,
        ui: Optional[AgentUI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.page = page
        self.store = store
        self.ui = ui or ConsoleUI()
        self.perception = Perception(config.text_limit)
        self.planner = Planner(config, store, http_client)
        self.controller = Controller(page, config.scroll_amount)
        self.status = AgentStatus.IDLE
        self.state: Optional[RunState] = None
        self.pending_resume: Optional[RunState] = self._consume_saved_state()

    @property
    def is_running(self) -> bool:
        return self.state is not None and self.state.is_running

    def _consume_saved_state(self) -> Optional[RunState]:
        record = self.store.get(RUN_STATE_KEY)
        if record is None:
            return None
        # 先清除再解析，保证同一份状态不会被恢复两次
        self.store.set(RUN_STATE_KEY, None)
        try:
            return RunState.from_record(record, self.config.max_history_messages)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("保存的任务状态无法解析: %s", e)
            self.ui.log("⚠ 保存的任务状态已损坏，已丢弃", "system")
            return None

    def _persist(self, state: RunState):
        self.store.set(RUN_STATE_KEY, state.to_record())

    async def run(self, goal: str) -> RunReport:
        """开始一个新任务"""
        if self.is_running:
            self.ui.log("⚠ 已有任务在执行，忽略新的目标", "system")
            return RunReport(RunOutcome.BUSY, goal, self.state.step_count)

        self.state = RunState(
            goal=goal,
            memory=Memory(self.config.max_history_messages),
            is_running=True,
        )
        self.ui.log(f"目标: {goal}", "user")
        return await self._loop(self.state)

    async def resume(self) -> Optional[RunReport]:
        """页面跳转后继续之前的任务；没有待恢复的任务时返回 None"""
        state = self.pending_resume
        if state is None:
            return None
        self.pending_resume = None
        if self.is_running:
            self.ui.log("⚠ 已有任务在执行，放弃恢复", "system")
            return RunReport(RunOutcome.BUSY, state.goal, state.step_count)

        state.is_running = True
        state.is_restoring = True
        self.state = state
        self.status = AgentStatus.RUNNING
        self.ui.set_loading(True)
        self.ui.log(f"↻ 页面已跳转，继续任务（已执行 {state.step_count} 步）: {state.goal}", "system")
        # 等页面稳定下来再拍快照
        await asyncio.sleep(self.config.settle_delay)
        state.is_restoring = False
        return await self._loop(state)

    def stop(self):
        """请求停止；正在进行的模型调用不会被打断，但其结果不会再被执行"""
        if self.is_running:
            self.state.is_running = False
            self.ui.log("■ 收到停止请求", "system")

    async def _loop(self, state: RunState) -> RunReport:
        self.status = AgentStatus.RUNNING
        self.ui.set_loading(True)
        outcome = RunOutcome.STOPPED
        answer = error = None
        try:
            while True:
                if not state.is_running:
                    outcome = RunOutcome.STOPPED
                    break
                if state.step_count >= self.config.max_steps:
                    outcome = RunOutcome.STEP_LIMIT
                    break
                outcome, answer = await self._step(state)
                if outcome is not None:
                    break
        except (AgentError, PlaywrightError) as e:
            # 不自动重试：拿着过期的页面快照重试只会放大错误
            outcome = RunOutcome.FAILED
            error = str(e)
            logger.warning("任务失败: %s", e, exc_info=logger.isEnabledFor(logging.DEBUG))
            self.ui.log(f"❌ 致命错误: {e}", "system")
        finally:
            state.is_running = False
            self.state = None
            self.ui.set_loading(False)

        if outcome is RunOutcome.STOPPED:
            self.ui.log("■ 任务已停止", "system")
        elif outcome is RunOutcome.STEP_LIMIT:
            self.ui.log(f"⚠ 已达到最大步数 {self.config.max_steps}，任务未完成", "system")

        self.status = AgentStatus.AWAITING_NAVIGATION if outcome is RunOutcome.NAVIGATING else AgentStatus.IDLE
        return RunReport(
            outcome=outcome,
            goal=state.goal,
            step_count=state.step_count,
            history=state.memory.as_messages(),
            answer=answer,
            error=error,
        )

    async def _step(self, state: RunState):
        """执行一步，返回 (结束原因, 答案)；任务继续时结束原因为 None"""
        state.step_count += 1
        step = state.step_count
        self.ui.log(f"--- 第 {step}/{self.config.max_steps} 步 ---", "system")

        # 1. 感知（每一步都重新拍快照，绝不复用旧索引）
        snapshots = await self.perception.snapshot(self.page)
        self.perception.remember(snapshots)
        url = self.page.url
        prompt = build_user_prompt(
            state.goal,
            Perception.serialize(snapshots),
            url,
            await self.page.title(),
            await self.page.detect_libraries(),
        )

        # 2. 规划
        decision = await self.planner.decide(self.planner.build_messages(state.memory, prompt))
        if not state.is_running:
            return RunOutcome.STOPPED, None
        if decision.thought:
            self.ui.log(f"思考: {decision.thought}", "plan")

        state.memory.record(
            f"[Step {step}] Page synced: {url} ({len(snapshots)} interactive elements).",
            json.dumps(decision.raw, ensure_ascii=False),
        )

        action = decision.action
        if isinstance(action, Done):
            self.ui.log(f"✓✓✓ 任务完成: {action.answer}", "system")
            return RunOutcome.DONE, action.answer
        if isinstance(action, RequestHelp):
            self.ui.log(f"✋ 需要人工协助: {action.reason}", "system")
            return RunOutcome.HELP_REQUESTED, action.reason

        # 3. 执行
        self.ui.log(f"动作: {describe(action)}", "action")
        if isinstance(action, Navigate) and is_safe_url(action.url):
            # 先落盘再跳转，顺序反了状态就丢了
            self._persist(state)
            result = await self.controller.perform(action, snapshots)
            self.ui.log(result.message, "action")
            if result.ok:
                return RunOutcome.NAVIGATING, None
            self.store.set(RUN_STATE_KEY, None)
        else:
            result = await self.controller.perform(action, snapshots)
            self.ui.log(result.message, "action")

        await asyncio.sleep(self.config.step_delay)
        return None, None
