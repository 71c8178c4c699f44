"""界面接口：核心逻辑只通过 log / set_loading 与界面交互"""

from typing import Literal, Protocol

LogCategory = Literal["system", "user", "plan", "action"]


class AgentUI(Protocol):
    def log(self, message: str, category: LogCategory = "system") -> None: ...

    def set_loading(self, loading: bool) -> None: ...


class ConsoleUI:
    """终端输出"""

    MARKERS = {
        "system": "⚙",
        "user": "👤",
        "plan": "💭",
        "action": "▶",
    }

    def __init__(self):
        self.loading = False

    def log(self, message: str, category: LogCategory = "system") -> None:
        print(f"{self.MARKERS.get(category, '·')} {message}")

    def set_loading(self, loading: bool) -> None:
        self.loading = loading
