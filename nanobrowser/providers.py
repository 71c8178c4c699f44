"""服务商适配：把统一的消息列表翻译成各家 API 的请求格式，再把回复取回来"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import openai
from openai import AsyncOpenAI

from .errors import (
    ConfigError,
    EmptyResponse,
    HttpStatusError,
    MissingCredential,
    NetworkError,
    ParseError,
    RequestTimeout,
)
from .models import Decision
from .parsing import decode_model_reply

logger = logging.getLogger(__name__)

Message = Dict[str, str]
PathPart = Union[str, int]


def split_system(messages: Sequence[Message]) -> Tuple[str, List[Message]]:
    """拆出 system 内容，其余消息保持顺序"""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    turns = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), turns


def coalesce_turns(messages: Sequence[Message]) -> List[Message]:
    """合并相邻的同角色消息（部分服务商不接受连续两条同角色消息）"""
    merged: List[Message] = []
    for message in messages:
        if merged and merged[-1]["role"] == message["role"]:
            merged[-1] = {
                "role": message["role"],
                "content": merged[-1]["content"] + "\n\n" + message["content"],
            }
        else:
            merged.append({"role": message["role"], "content": message["content"]})
    return merged


def dig(payload: Any, path: Sequence[PathPart]) -> Optional[Any]:
    """按路径取值，任何一级缺失都返回 None"""
    node = payload
    for part in path:
        try:
            node = node[part]
        except (KeyError, IndexError, TypeError):
            return None
    return node


class ProviderAdapter:
    """
    单个服务商的适配器。
    encode 负责请求体，send 负责传输，text_path 描述回复正文在响应里的位置。
    """
    name = ""
    default_base_url: Optional[str] = None
    text_path: Tuple[PathPart, ...] = ()

    def encode(self, model: str, messages: Sequence[Message], max_tokens: int) -> Dict[str, Any]:
        raise NotImplementedError

    async def send(
        self,
        body: Dict[str, Any],
        api_key: str,
        *,
        timeout: float,
        http_client: httpx.AsyncClient,
        base_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_text(self, payload: Dict[str, Any]) -> Optional[str]:
        text = dig(payload, self.text_path)
        return text if isinstance(text, str) else None

    async def _post_json(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
        timeout: float,
    ) -> Dict[str, Any]:
        try:
            response = await http_client.post(url, headers=headers, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"{self.name} 请求超时（{timeout}s）", self.name) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.name} 网络错误: {e}", self.name) from e

        if not response.is_success:
            raise HttpStatusError(self.name, response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(self.name, response.text, "响应体不是 JSON") from e


class OpenAIAdapter(ProviderAdapter):
    """chat-completions 风格，显式要求 JSON 输出"""
    name = "openai"
    text_path = ("choices", 0, "message", "content")

    def encode(self, model, messages, max_tokens):
        return {
            "model": model,
            "temperature": 0,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        }

    async def send(self, body, api_key, *, timeout, http_client, base_url=None):
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or self.default_base_url,
            timeout=timeout,
            max_retries=0,  # 不自动重试：页面快照可能已经过期
            http_client=http_client,
        )
        try:
            response = await client.chat.completions.create(**body)
        except openai.APITimeoutError as e:
            raise RequestTimeout(f"{self.name} 请求超时（{timeout}s）", self.name) from e
        except openai.APIConnectionError as e:
            raise NetworkError(f"{self.name} 网络错误: {e}", self.name) from e
        except openai.APIStatusError as e:
            raise HttpStatusError(self.name, e.status_code, e.response.text) from e
        return response.model_dump()


class CustomAdapter(OpenAIAdapter):
    """OpenAI 兼容接口（如各类网关），必须给出 base_url"""
    name = "custom"

    async def send(self, body, api_key, *, timeout, http_client, base_url=None):
        if not base_url:
            raise ConfigError("custom 服务商需要配置 base_url（NANO_BASE_URL）")
        return await super().send(body, api_key, timeout=timeout, http_client=http_client, base_url=base_url)


class AnthropicAdapter(ProviderAdapter):
    """system 字符串 + 交替的 user/assistant 消息"""
    name = "anthropic"
    default_base_url = "https://api.anthropic.com"
    text_path = ("content", 0, "text")
    api_version = "2023-06-01"

    def encode(self, model, messages, max_tokens):
        system, turns = split_system(messages)
        body = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": 0,
            "messages": coalesce_turns(turns),
        }
        if system:
            body["system"] = system
        return body

    async def send(self, body, api_key, *, timeout, http_client, base_url=None):
        url = (base_url or self.default_base_url).rstrip("/") + "/v1/messages"
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        return await self._post_json(http_client, url, headers, body, timeout)


class GeminiAdapter(ProviderAdapter):
    """system_instruction + contents，角色只有 user/model"""
    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com"
    text_path = ("candidates", 0, "content", "parts", 0, "text")

    def encode(self, model, messages, max_tokens):
        system, turns = split_system(messages)
        turns = [
            {"role": "model" if m["role"] == "assistant" else "user", "content": m["content"]}
            for m in turns
        ]
        body = {
            "model": model,
            "contents": [
                {"role": m["role"], "parts": [{"text": m["content"]}]}
                for m in coalesce_turns(turns)
            ],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": max_tokens,
                "responseMimeType": "application/json",
            },
        }
        if system:
            body["system_instruction"] = {"parts": [{"text": system}]}
        return body

    async def send(self, body, api_key, *, timeout, http_client, base_url=None):
        body = dict(body)
        model = body.pop("model")
        url = (base_url or self.default_base_url).rstrip("/") + f"/v1beta/models/{model}:generateContent"
        headers = {"x-goog-api-key": api_key, "content-type": "application/json"}
        return await self._post_json(http_client, url, headers, body, timeout)


PROVIDERS: Dict[str, ProviderAdapter] = {
    adapter.name: adapter
    for adapter in (OpenAIAdapter(), AnthropicAdapter(), GeminiAdapter(), CustomAdapter())
}


def get_adapter(provider: str) -> ProviderAdapter:
    try:
        return PROVIDERS[provider]
    except KeyError:
        raise ConfigError(f"未知服务商 {provider!r}，可选: {', '.join(PROVIDERS)}") from None


async def complete(
    provider: str,
    model: Optional[str],
    api_key: Optional[str],
    messages: Sequence[Message],
    *,
    timeout: float = 30.0,
    base_url: Optional[str] = None,
    max_tokens: int = 4096,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Decision:
    """调用一次模型并返回解析好的决策。失败时抛出 errors 中对应的异常，不重试。"""
    adapter = get_adapter(provider)
    if not api_key:
        raise MissingCredential(provider)
    if not model:
        raise ConfigError(f"{provider} 未指定模型（NANO_MODEL）")

    body = adapter.encode(model, messages, max_tokens)
    logger.debug("调用 %s/%s，消息数 %d", provider, model, len(messages))
    if http_client is None:
        async with httpx.AsyncClient() as client:
            payload = await adapter.send(body, api_key, timeout=timeout, http_client=client, base_url=base_url)
    else:
        payload = await adapter.send(body, api_key, timeout=timeout, http_client=http_client, base_url=base_url)

    text = adapter.extract_text(payload)
    if not text or not text.strip():
        raise EmptyResponse(f"{provider} 返回了空回复", provider)
    return decode_model_reply(text, provider)
