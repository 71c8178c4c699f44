"""执行模块：把解析好的动作落到页面上"""

import logging
from typing import List, Optional

from .guardrails import is_safe_url
from .models import (
    Action,
    ActionOutcome,
    ActionResult,
    ClickElement,
    ElementSnapshot,
    InputText,
    Navigate,
    Scroll,
)
from .page import PageAccessor

logger = logging.getLogger(__name__)


class Controller:
    """执行模块：只认本步刚拿到的快照里的索引"""

    def __init__(self, page: PageAccessor, scroll_amount: int = 500):
        self.page = page
        self.scroll_amount = scroll_amount

    async def perform(self, action: Action, snapshots: List[ElementSnapshot]) -> ActionResult:
        """
        执行动作，返回 SUCCESS / MISS / BLOCKED。
        done、request_help 由主循环处理，不会走到这里。
        """
        if isinstance(action, ClickElement):
            return await self._click(action.index, snapshots)
        if isinstance(action, InputText):
            return await self._input(action.index, action.text, snapshots)
        if isinstance(action, Scroll):
            return await self._scroll(action.direction)
        if isinstance(action, Navigate):
            return await self._navigate(action.url)
        raise ValueError(f"{action.name} 不是页面动作")

    @staticmethod
    def _lookup(index: int, snapshots: List[ElementSnapshot]) -> Optional[ElementSnapshot]:
        return next((s for s in snapshots if s.index == index), None)

    async def _click(self, index: int, snapshots: List[ElementSnapshot]) -> ActionResult:
        """点击元素"""
        snap = self._lookup(index, snapshots)
        if not snap:
            return ActionResult(ActionOutcome.MISS, f"❌ 找不到元素 [{index}]")
        if not await self.page.click(snap.ref):
            return ActionResult(ActionOutcome.MISS, f"❌ 元素 [{index}] 已失效，点击未执行")
        return ActionResult(ActionOutcome.SUCCESS, f"✓ 点击 [{index}] {snap.tag_name} \"{snap.text}\"")

    async def _input(self, index: int, text: str, snapshots: List[ElementSnapshot]) -> ActionResult:
        """填充输入框或 contentEditable 区域"""
        snap = self._lookup(index, snapshots)
        if not snap:
            return ActionResult(ActionOutcome.MISS, f"❌ 找不到元素 [{index}]")
        if not await self.page.set_value(snap.ref, text):
            return ActionResult(ActionOutcome.MISS, f"❌ 元素 [{index}] 无法输入")
        return ActionResult(ActionOutcome.SUCCESS, f"✓ 填充 [{index}] {snap.tag_name} = '{text}'")

    async def _scroll(self, direction: str) -> ActionResult:
        """滚动（不做边界检查，浏览器会自己截断）"""
        dy = -self.scroll_amount if direction == "up" else self.scroll_amount
        await self.page.scroll_by(dy)
        return ActionResult(ActionOutcome.SUCCESS, f"✓ 滚动 {direction}")

    async def _navigate(self, url: str) -> ActionResult:
        """跳转，只允许 http/https"""
        if not is_safe_url(url):
            logger.warning("拦截不安全的跳转地址: %r", url)
            return ActionResult(ActionOutcome.BLOCKED, f"⛔ 已拦截不安全的地址: {url}")
        if not await self.page.navigate(url):
            return ActionResult(ActionOutcome.MISS, f"❌ 跳转失败: {url}")
        return ActionResult(ActionOutcome.SUCCESS, f"✓ 跳转 {url}")
