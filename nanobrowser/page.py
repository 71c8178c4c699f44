"""页面访问接口：感知与执行都只通过这里接触浏览器"""

import logging
from typing import Any, Dict, List, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .errors import PageError

logger = logging.getLogger(__name__)

REF_ATTRIBUTE = "data-nano-ref"


class PageAccessor(Protocol):
    """Agent 需要的全部页面能力。click/set_value/navigate 返回 False 表示目标已失效"""

    @property
    def url(self) -> str: ...

    async def title(self) -> str: ...

    async def snapshot(self) -> List[Dict[str, Any]]: ...

    async def detect_libraries(self) -> List[str]: ...

    async def click(self, ref: str) -> bool: ...

    async def set_value(self, ref: str, text: str) -> bool: ...

    async def scroll_by(self, dy: int) -> None: ...

    async def navigate(self, url: str) -> bool: ...


# 深度优先遍历 body，收集候选节点及其布局信息，同时打上 data-nano-ref
SNAPSHOT_JS = """
(refAttr) => {
    document.querySelectorAll('[' + refAttr + ']').forEach(el => el.removeAttribute(refAttr));

    const TAGS = new Set(['A', 'BUTTON', 'INPUT', 'SELECT', 'TEXTAREA', 'DETAILS', 'SUMMARY']);
    const ROLES = new Set(['button', 'link', 'checkbox', 'menuitem', 'tab']);
    const ATTRS = ['type', 'name', 'href', 'placeholder', 'aria-label', 'title', 'value'];

    const nodes = [];
    let nextRef = 0;

    const walk = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none') return;  // 整棵子树都不可见

        const rect = el.getBoundingClientRect();
        const role = el.getAttribute('role');
        const hasClickHandler = typeof el.onclick === 'function' || el.hasAttribute('onclick');
        const candidate = TAGS.has(el.tagName) || ROLES.has(role) || hasClickHandler ||
            el.isContentEditable || style.cursor === 'pointer';

        if (candidate) {
            const ref = String(nextRef++);
            el.setAttribute(refAttr, ref);
            const attributes = {};
            for (const name of ATTRS) {
                const value = el.getAttribute(name);
                if (value !== null) attributes[name] = value;
            }
            nodes.push({
                ref,
                tag: el.tagName.toLowerCase(),
                text: (el.innerText || '').trim().slice(0, 500),
                value: typeof el.value === 'string' ? el.value : null,
                role,
                attributes,
                width: rect.width,
                height: rect.height,
                display: style.display,
                visibility: style.visibility,
                opacity: parseFloat(style.opacity),
                cursor: style.cursor,
                hasClickHandler,
                contentEditable: el.isContentEditable,
            });
        }
        for (const child of el.children) walk(child);
    };

    if (document.body) walk(document.body);
    return nodes;
}
"""

# 用原生 setter 写值，避免被 React 等框架的受控组件还原；再派发 input/change
SET_VALUE_JS = """
(el, text) => {
    const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype
        : el instanceof HTMLSelectElement ? HTMLSelectElement.prototype
        : el instanceof HTMLInputElement ? HTMLInputElement.prototype
        : null;
    if (proto) {
        el.focus();
        Object.getOwnPropertyDescriptor(proto, 'value').set.call(el, text);
    } else if (el.isContentEditable) {
        el.focus();
        el.textContent = text;
    } else {
        return false;
    }
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""

DETECT_LIBRARIES_JS = """
() => {
    const found = [];
    if (window.React || document.querySelector('[data-reactroot]') || window.__REACT_DEVTOOLS_GLOBAL_HOOK__) found.push('React');
    if (window.Vue || document.querySelector('[data-v-app]')) found.push('Vue');
    if (window.angular || document.querySelector('[ng-version]')) found.push('Angular');
    if (window.jQuery) found.push('jQuery');
    if (document.querySelector('[class*="svelte-"]')) found.push('Svelte');
    if (window.__NEXT_DATA__) found.push('Next.js');
    if (window.__NUXT__) found.push('Nuxt');
    return found;
}
"""


class PlaywrightPage:
    """PageAccessor 的 Playwright 实现"""

    def __init__(self, page: Page, navigation_timeout: float = 30.0):
        self.page = page
        self.navigation_timeout = navigation_timeout

    @property
    def url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError:
            return ""

    async def snapshot(self) -> List[Dict[str, Any]]:
        try:
            return await self.page.evaluate(SNAPSHOT_JS, REF_ATTRIBUTE)
        except PlaywrightError as e:
            # 页面自己跳转时执行上下文会被销毁，等加载完再拍一次
            logger.info("快照失败，等待页面加载后重试: %s", e)
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=self.navigation_timeout * 1000)
            return await self.page.evaluate(SNAPSHOT_JS, REF_ATTRIBUTE)
        except PlaywrightError as e:
            raise PageError(f"无法读取页面元素: {e}") from e

    async def detect_libraries(self) -> List[str]:
        try:
            return await self.page.evaluate(DETECT_LIBRARIES_JS)
        except PlaywrightError as e:
            logger.debug("前端库检测失败: %s", e)
            return []

    def _locator(self, ref: str):
        return self.page.locator(f"[{REF_ATTRIBUTE}=\"{ref}\"]")

    async def click(self, ref: str) -> bool:
        locator = self._locator(ref)
        try:
            if await locator.count() == 0:
                return False
            if not await locator.first.is_visible():
                return False
            await locator.first.click(timeout=5000)
            return True
        except PlaywrightError as e:
            logger.info("点击 ref=%s 失败: %s", ref, e)
            return False

    async def set_value(self, ref: str, text: str) -> bool:
        locator = self._locator(ref)
        try:
            if await locator.count() == 0:
                return False
            return bool(await locator.first.evaluate(SET_VALUE_JS, text))
        except PlaywrightError as e:
            logger.info("输入 ref=%s 失败: %s", ref, e)
            return False

    async def scroll_by(self, dy: int) -> None:
        try:
            await self.page.evaluate("(dy) => window.scrollBy(0, dy)", dy)
        except PlaywrightError as e:
            raise PageError(f"滚动失败: {e}") from e

    async def navigate(self, url: str) -> bool:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
            return True
        except PlaywrightError as e:
            logger.warning("跳转 %s 失败: %s", url, e)
            return False
