"""驱动层：模拟"每次页面加载都新建一个 Agent"的生命周期"""

import logging
from typing import Awaitable, Callable, Optional

import httpx
from playwright.async_api import async_playwright

from .config import AgentConfig
from .core import NanoAgent
from .models import AgentStatus, RunReport
from .page import PageAccessor, PlaywrightPage
from .storage import StateStore
from .ui import AgentUI, ConsoleUI

logger = logging.getLogger(__name__)


async def drive(
    page: PageAccessor,
    config: AgentConfig,
    store: StateStore,
    ui: AgentUI,
    goal: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    wait_for_load: Optional[Callable[[], Awaitable[None]]] = None,
) -> Optional[RunReport]:
    """
    每次页面加载都构造一个新的 NanoAgent：
    - 存储里有跳转前保存的任务 → 恢复它
    - 否则在第一次加载时执行 goal
    任务没有以跳转结束时返回最后一次的 RunReport。
    """
    report: Optional[RunReport] = None
    first_load = True
    while True:
        agent = NanoAgent(config, page, store, ui, http_client=http_client)
        if agent.pending_resume is not None:
            if first_load and goal:
                ui.log("⚠ 发现上次未完成的任务，先恢复它，新目标不会执行", "system")
            report = await agent.resume()
        elif first_load and goal:
            report = await agent.run(goal)
        else:
            return report
        first_load = False

        if agent.status is not AgentStatus.AWAITING_NAVIGATION:
            return report
        if wait_for_load is not None:
            await wait_for_load()


async def run_session(
    goal: Optional[str],
    start_url: Optional[str],
    config: AgentConfig,
    store: StateStore,
    ui: Optional[AgentUI] = None,
    headless: bool = False,
) -> Optional[RunReport]:
    """启动浏览器并执行任务"""
    ui = ui or ConsoleUI()
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        try:
            page = await browser.new_page()
            if start_url:
                await page.goto(start_url)

            async def wait_for_load():
                await page.wait_for_load_state("load")

            async with httpx.AsyncClient() as http_client:
                return await drive(
                    PlaywrightPage(page, config.request_timeout),
                    config,
                    store,
                    ui,
                    goal,
                    http_client=http_client,
                    wait_for_load=wait_for_load,
                )
        finally:
            await browser.close()
