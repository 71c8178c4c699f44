"""安全防护模块：清洗页面文本，防止提示词注入"""

import re
import unicodedata
from typing import List, Optional, Pattern, Tuple
from urllib.parse import urlsplit

BLOCKED_OVERRIDE = "[BLOCKED_OVERRIDE_ATTEMPT]"
BLOCKED_INJECTION = "[BLOCKED_TASK_INJECTION]"
TAG_REDACTED = "[TAG_REDACTED]"

USER_REQUEST_TAG = "nano_user_request"
UNTRUSTED_TAG = "nano_untrusted_content"

ALLOWED_SCHEMES = ("http", "https")

# 按顺序执行；追加新规则不需要改调用方
SECURITY_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"ignore\s*(?:all\s*)?(?:the\s*)?(?:previous|prior|above)\s*instructions", re.I), BLOCKED_OVERRIDE),
    (re.compile(r"forget\s*(?:all\s*)?(?:previous\s*|prior\s*)?instructions", re.I), BLOCKED_OVERRIDE),
    (re.compile(r"disregard\s*(?:all\s*)?(?:the\s*)?(?:above|previous|prior)\s*(?:instructions|tasks)", re.I), BLOCKED_OVERRIDE),
    (re.compile(r"your\s*new\s*task\s*is|you\s*are\s*now|actually\s*you\s*must", re.I), BLOCKED_INJECTION),
]

DELIMITER_PATTERN = re.compile(
    r"<\s*/?\s*(?:%s|%s)\b[^>]*>" % (USER_REQUEST_TAG, UNTRUSTED_TAG), re.I
)

# 零宽字符、软连字符、双向控制符、变体选择符、标签字符
INVISIBLE_RANGES = [
    (0x00AD, 0x00AD), (0x034F, 0x034F), (0x061C, 0x061C), (0x070F, 0x070F),
    (0x180E, 0x180E), (0x200B, 0x200F), (0x2028, 0x202F), (0x2060, 0x2064),
    (0x2066, 0x206F), (0xFE00, 0xFE0F), (0xFEFF, 0xFEFF),
    (0xE0000, 0xE007F), (0xE0100, 0xE01EF),
]


def _is_invisible(ch: str) -> bool:
    code = ord(ch)
    if any(lo <= code <= hi for lo, hi in INVISIBLE_RANGES):
        return True
    return unicodedata.category(ch) == "Cf"


def _strip_invisible(text: str) -> str:
    return "".join(ch for ch in text if not _is_invisible(ch))


def redact_delimiters(text: str) -> str:
    return DELIMITER_PATTERN.sub(TAG_REDACTED, text)


def sanitize(text: Optional[str]) -> str:
    """
    清洗不可信文本。顺序固定：
    规范化 → 去除不可见字符 → 注入短语替换 → 分隔符伪造替换。
    有些攻击只在规范化之后才会显形，所以顺序不能调换。
    """
    if not text:
        return ""
    result = unicodedata.normalize("NFKC", str(text))
    result = _strip_invisible(result)
    # 去掉零宽字符后组合字符可能重新相邻，再规范化一次保证幂等
    result = unicodedata.normalize("NFKC", result)
    for pattern, replacement in SECURITY_PATTERNS:
        result = pattern.sub(replacement, result)
    return redact_delimiters(result)


def wrap_untrusted(text: str) -> str:
    """页面内容一律经过清洗后再包进不可信分隔符"""
    return f"<{UNTRUSTED_TAG}>\n{sanitize(text)}\n</{UNTRUSTED_TAG}>"


def wrap_user_request(goal: str) -> str:
    return f"<{USER_REQUEST_TAG}>\n{redact_delimiters(goal)}\n</{USER_REQUEST_TAG}>"


def is_safe_url(url: Optional[str]) -> bool:
    """只允许 http/https，拦截 javascript:、file:、data: 等"""
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_SCHEMES and bool(parts.netloc)
