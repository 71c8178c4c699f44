"""感知模块：从页面提取可交互元素，并生成给 LLM 看的文本快照"""

import re
from typing import Any, Dict, Iterable, List, Set

from .models import ElementSnapshot, structural_hash

INTERACTIVE_TAGS = {"a", "button", "input", "select", "textarea", "details", "summary"}
INTERACTIVE_ROLES = {"button", "link", "checkbox", "menuitem", "tab"}

# 序列化时保留的属性，其余一概丢弃以控制提示词长度
ATTRIBUTE_WHITELIST = ("type", "name", "href", "placeholder", "aria-label", "title", "value")

TEXT_FALLBACK = ("text", "value", "placeholder", "aria-label", "title")

_WHITESPACE = re.compile(r"\s+")


def is_visible(node: Dict[str, Any]) -> bool:
    """已布局、非 display:none、非 visibility:hidden、不透明度 > 0"""
    if (node.get("width") or 0) <= 0 or (node.get("height") or 0) <= 0:
        return False
    if node.get("display") == "none":
        return False
    if node.get("visibility") == "hidden":
        return False
    try:
        if float(node.get("opacity", 1)) <= 0:
            return False
    except (TypeError, ValueError):
        pass
    return True


def is_interactive(node: Dict[str, Any]) -> bool:
    tag = (node.get("tag") or "").lower()
    if tag == "input" and ((node.get("attributes") or {}).get("type") or "").lower() == "hidden":
        return False
    if tag in INTERACTIVE_TAGS:
        return True
    if (node.get("role") or "").lower() in INTERACTIVE_ROLES:
        return True
    return bool(node.get("hasClickHandler") or node.get("contentEditable") or node.get("cursor") == "pointer")


def _clip(value: Any, limit: int) -> str:
    text = _WHITESPACE.sub(" ", str(value or "")).strip()
    return text[:limit]


class Perception:
    """
    感知模块：把页面节点转换成带索引的元素快照。
    索引按深度优先的文档顺序从 0 连续分配，每次快照都重新分配，不能跨快照使用。
    """

    def __init__(self, text_limit: int = 150):
        self.text_limit = text_limit
        self.seen_hashes: Set[str] = set()

    async def snapshot(self, page) -> List[ElementSnapshot]:
        """从页面取节点，过滤后生成快照。新旧判断基于之前 remember 过的元素"""
        nodes = await page.snapshot()
        return self.build(nodes)

    def build(self, nodes: Iterable[Dict[str, Any]]) -> List[ElementSnapshot]:
        snapshots: List[ElementSnapshot] = []
        for node in nodes:
            if not is_visible(node) or not is_interactive(node):
                continue
            tag = (node.get("tag") or "").lower()
            attrs = {k: str(v) for k, v in (node.get("attributes") or {}).items() if v is not None}
            if attrs.get("type", "").lower() == "password":
                # 密码不进提示词
                attrs.pop("value", None)
                node = {**node, "value": None}
            text = self._label(node, attrs)
            snapshots.append(
                ElementSnapshot(
                    index=len(snapshots),
                    tag_name=tag,
                    text=text,
                    role=node.get("role") or None,
                    attributes={
                        k: _clip(attrs[k], self.text_limit) for k in ATTRIBUTE_WHITELIST if attrs.get(k)
                    },
                    is_new=structural_hash(tag, text) not in self.seen_hashes,
                    ref=str(node.get("ref", "")),
                )
            )
        return snapshots

    def _label(self, node: Dict[str, Any], attrs: Dict[str, str]) -> str:
        """可见文本 → value → placeholder → aria-label → title"""
        for key in TEXT_FALLBACK:
            value = node.get(key) if key in ("text", "value") else attrs.get(key)
            label = _clip(value, self.text_limit)
            if label:
                return label
        return ""

    def remember(self, snapshots: Iterable[ElementSnapshot]):
        """记录本次见过的元素，只影响下一次快照的 is_new"""
        self.seen_hashes.update(s.structural_hash for s in snapshots)

    @staticmethod
    def serialize(snapshots: List[ElementSnapshot]) -> str:
        """生成文本快照，每个元素一行；行首 * 表示新出现的元素"""
        if not snapshots:
            return "(no interactive elements)"
        lines = []
        for snap in snapshots:
            marker = "*" if snap.is_new else ""
            attrs = " ".join(f"{k}={v}" for k, v in snap.attributes.items())
            attrs_str = f" {{{attrs}}}" if attrs else ""
            role_str = f" (role: {snap.role})" if snap.role else ""
            lines.append(f"{marker}[{snap.index}] {snap.tag_name} \"{snap.text}\"{attrs_str}{role_str}")
        return "\n".join(lines)
