"""
测试用的假页面、假界面以及模拟的 LLM 接口
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from nanobrowser.config import AgentConfig, key_name
from nanobrowser.storage import MemoryStore


def node(ref: str, tag: str, text: str = "", **extra) -> Dict[str, Any]:
    """构造一个默认可见的页面节点"""
    data = {
        "ref": ref,
        "tag": tag,
        "text": text,
        "value": None,
        "role": None,
        "attributes": {},
        "width": 120,
        "height": 24,
        "display": "block",
        "visibility": "visible",
        "opacity": 1,
        "cursor": "auto",
        "hasClickHandler": False,
        "contentEditable": False,
    }
    data.update(extra)
    return data


class FakePage:
    """内存中的 PageAccessor 实现"""

    def __init__(self, nodes: Optional[List[Dict[str, Any]]] = None, url: str = "https://shop.example.com/"):
        self.nodes = list(nodes or [])
        self.url = url
        self.clicks: List[str] = []
        self.values: Dict[str, str] = {}
        self.scrolls: List[int] = []
        self.navigations: List[str] = []
        self.detached = set()
        self.navigate_ok = True

    async def title(self) -> str:
        return "Example Shop"

    async def snapshot(self):
        return [dict(n) for n in self.nodes]

    async def detect_libraries(self):
        return ["React"]

    def _alive(self, ref: str) -> bool:
        return ref not in self.detached and any(n["ref"] == ref for n in self.nodes)

    async def click(self, ref: str) -> bool:
        if not self._alive(ref):
            return False
        self.clicks.append(ref)
        return True

    async def set_value(self, ref: str, text: str) -> bool:
        if not self._alive(ref):
            return False
        self.values[ref] = text
        return True

    async def scroll_by(self, dy: int) -> None:
        self.scrolls.append(dy)

    async def navigate(self, url: str) -> bool:
        self.navigations.append(url)
        if self.navigate_ok:
            self.url = url
        return self.navigate_ok


class RecordingUI:
    def __init__(self):
        self.lines: List[tuple] = []
        self.loading: List[bool] = []

    def log(self, message: str, category: str = "system") -> None:
        self.lines.append((message, category))

    def set_loading(self, loading: bool) -> None:
        self.loading.append(loading)

    def text(self, category: Optional[str] = None) -> str:
        return "\n".join(m for m, c in self.lines if category is None or c == category)


def chat_completion(content: Optional[str]) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": content},
            }
        ],
    }


class ScriptedLLM:
    """按顺序返回预设回复的 OpenAI 兼容接口，并记录收到的请求体"""

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.requests: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        reply = self.replies.pop(0)
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return httpx.Response(200, json=chat_completion(content))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def messages(self, call: int) -> List[Dict[str, str]]:
        return self.requests[call]["messages"]


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(provider="openai", model="gpt-4o", max_steps=5, step_delay=0, settle_delay=0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore({key_name("openai"): "sk-test"})


@pytest.fixture
def ui() -> RecordingUI:
    return RecordingUI()
