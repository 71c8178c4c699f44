"""记忆模块：保存对话历史（滑动窗口）"""

from typing import Dict, Iterable, List

Message = Dict[str, str]


class Memory:
    """
    对话历史，只保留最近 max_pairs 轮（每轮一条 user + 一条 assistant）。
    system prompt 不存放在这里，每次调用时重新拼上。
    """

    def __init__(self, max_pairs: int = 10, messages: Iterable[Message] = ()):
        self.max_pairs = max_pairs
        self.messages: List[Message] = []
        for m in messages:
            if m.get("role") in ("user", "assistant"):
                self.messages.append({"role": m["role"], "content": str(m.get("content", ""))})
        self.prune()

    def __len__(self) -> int:
        return len(self.messages)

    def record(self, user_content: str, assistant_content: str):
        """记录单步：一条同步摘要 + 一条模型原始决策"""
        self.messages.append({"role": "user", "content": user_content})
        self.messages.append({"role": "assistant", "content": assistant_content})
        self.prune()

    def prune(self):
        limit = 2 * self.max_pairs
        if len(self.messages) > limit:
            del self.messages[: len(self.messages) - limit]

    def as_messages(self) -> List[Message]:
        return [dict(m) for m in self.messages]

