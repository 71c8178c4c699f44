"""解析模型回复：抽取 JSON、尽力修复、转换为结构化决策"""

import json
import logging
import re
from typing import Any, Callable, Dict, Optional

from json_repair import repair_json

from .errors import ParseError
from .models import (
    ACTION_NAMES,
    Action,
    ClickElement,
    Decision,
    Done,
    InputText,
    Navigate,
    RequestHelp,
    Scroll,
)

logger = logging.getLogger(__name__)

RepairStrategy = Callable[[str], str]

_CODE_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*$", re.M)


def extract_json_span(text: str) -> Optional[str]:
    """取第一个 { 到最后一个 } 之间的内容，容忍模型在 JSON 外面写解释"""
    text = _CODE_FENCE.sub("", text)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1:
        return None
    if end < start:
        # 回复被截断，交给 repair 补全括号
        return text[start:]
    return text[start:end + 1]


def _as_index(value: Any, provider: str, raw: str) -> int:
    if isinstance(value, bool):
        raise ParseError(provider, raw, "index 不是整数")
    if isinstance(value, int):
        index = value
    elif isinstance(value, str) and value.strip().isdigit():
        index = int(value.strip())
    else:
        raise ParseError(provider, raw, "index 不是整数")
    if index < 0:
        raise ParseError(provider, raw, "index 不能为负数")
    return index


def _build_action(name: str, args: Dict[str, Any], provider: str, raw: str) -> Action:
    def require(key: str) -> Any:
        if args.get(key) is None:
            raise ParseError(provider, raw, f"{name} 缺少参数 {key}")
        return args[key]

    if name == ClickElement.name:
        return ClickElement(index=_as_index(require("index"), provider, raw))
    if name == InputText.name:
        return InputText(index=_as_index(require("index"), provider, raw), text=str(require("text")))
    if name == Scroll.name:
        direction = str(args.get("direction", "down")).lower()
        if direction not in ("up", "down"):
            raise ParseError(provider, raw, f"未知的滚动方向 {direction}")
        return Scroll(direction=direction)
    if name == Navigate.name:
        return Navigate(url=str(require("url")).strip())
    if name == RequestHelp.name:
        return RequestHelp(reason=str(args.get("reason") or ""))
    if name == Done.name:
        answer = args.get("answer", args.get("summary", args.get("text")))
        return Done(answer=str(answer) if answer is not None else "")
    raise ParseError(provider, raw, f"未知动作 {name}")


def decode_model_reply(text: Optional[str], provider: str = "", repair: RepairStrategy = repair_json) -> Decision:
    """
    把模型回复解析成 Decision，所有服务商共用。
    支持两种写法：
      {"thought": "...", "action": "click_element", "args": {"index": 0}}
      {"thought": "...", "action": {"name": "click_element", "args": {"index": 0}}}
    """
    raw = text or ""
    span = extract_json_span(raw)
    if span is None:
        raise ParseError(provider, raw, "回复中没有 JSON 对象")

    try:
        # strict=False 允许字符串里出现原始换行
        data = json.loads(span, strict=False)
    except json.JSONDecodeError:
        logger.debug("JSON 解析失败，尝试修复: %r", span[:200])
        try:
            data = json.loads(repair(span))
        except (ValueError, TypeError) as e:
            raise ParseError(provider, raw, f"修复后仍无法解析: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(provider, raw, "顶层不是 JSON 对象")

    action_field = data.get("action")
    args = data.get("args")
    if isinstance(action_field, dict):
        name = action_field.get("name")
        args = action_field.get("args", args)
    else:
        name = action_field
    if not isinstance(name, str) or name not in ACTION_NAMES:
        raise ParseError(provider, raw, f"未知动作 {name!r}")
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ParseError(provider, raw, "args 不是对象")

    thought = data.get("thought") or ""
    return Decision(
        thought=str(thought),
        action=_build_action(name, args, provider, raw),
        raw=data,
    )
