"""
@description OpenAI 兼容视觉模型客户端
@responsibility 发送带内联图片的对话补全请求，按状态码重试并对失败原因分类
"""

import asyncio
from typing import Optional
from urllib.parse import urljoin

import httpx
from loguru import logger

COMPLETIONS_PATH = "/v1/chat/completions"


class CaptionError(Exception):
    """AI 描述生成失败，reason 用于调用方判断是否整体重试"""

    INVALID_CONFIG = "invalid_config"
    COMPRESSION_FAILED = "compression_failed"
    AUTH_FAILED = "auth_failed"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    REQUEST_REJECTED = "request_rejected"
    NETWORK_UNREACHABLE = "network_unreachable"
    EMPTY_RESPONSE = "empty_response"

    RETRYABLE_REASONS = frozenset({RATE_LIMITED, UPSTREAM_ERROR, NETWORK_UNREACHABLE})

    def __init__(self, reason: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.reason in self.RETRYABLE_REASONS


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return False


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or "无详细错误信息"
    except Exception:
        return "无详细错误信息"


class VisionClient:
    """视觉模型 HTTP 客户端（连接池复用，keep-alive）"""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post_with_retry(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        """传输错误或 5xx 时线性退避重试（第 n 次重试前等待 n * retry_delay 秒），4xx 不重试"""
        retry_count = 0
        while True:
            try:
                response = await self._client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response
            except (httpx.TransportError, httpx.HTTPStatusError) as e:
                if not _is_retryable(e) or retry_count >= self._max_retries:
                    raise
                retry_count += 1
                status = (
                    e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
                )
                logger.warning(f"AI 服务请求失败 (状态: {status})，第 {retry_count} 次重试...")
                await asyncio.sleep(retry_count * self._retry_delay)

    async def describe_image(
        self,
        base_url: str,
        api_key: str,
        model: str,
        prompt: str,
        image_base64: str,
        max_tokens: int = 300,
    ) -> str:
        """
        请求模型描述图片

        Returns:
            去除首尾空白的描述文本

        Raises:
            CaptionError: 请求最终失败或响应无有效内容
        """
        payload = {
            "model": model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"},
                        },
                    ],
                }
            ],
            "max_tokens": max_tokens,
        }
        url = urljoin(base_url, COMPLETIONS_PATH)
        headers = {"Authorization": f"Bearer {api_key}"}

        try:
            response = await self._post_with_retry(url, payload, headers)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = _error_detail(e.response)
            if status in (401, 403):
                raise CaptionError(
                    CaptionError.AUTH_FAILED, "AI 服务认证失败，请检查 API 密钥", status
                ) from e
            if status == 429:
                raise CaptionError(
                    CaptionError.RATE_LIMITED, "AI 服务请求频率过高，请稍后重试", status
                ) from e
            if status >= 500:
                raise CaptionError(
                    CaptionError.UPSTREAM_ERROR, f"AI 服务内部错误 ({status}): {detail}", status
                ) from e
            raise CaptionError(
                CaptionError.REQUEST_REJECTED,
                f"AI 服务返回错误 (状态码: {status}): {detail}",
                status,
            ) from e
        except httpx.TransportError as e:
            raise CaptionError(
                CaptionError.NETWORK_UNREACHABLE,
                f"无法连接到 AI 服务，请检查网络或 AI URL 配置: {e}",
            ) from e

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CaptionError(CaptionError.EMPTY_RESPONSE, "AI 未能生成有效内容") from e

        if not isinstance(content, str) or not content.strip():
            raise CaptionError(CaptionError.EMPTY_RESPONSE, "AI 未能生成有效内容")
        return content.strip()
