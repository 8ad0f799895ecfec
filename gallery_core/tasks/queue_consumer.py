"""
@description Redis Stream 任务队列消费者
@responsibility 从队列读取任务、调用处理函数、回写结果，失败时按指数退避重新入队
"""

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from loguru import logger

JobHandler = Callable[[dict], Awaitable[dict]]

DEFAULT_GROUP = "gallery-workers"
RESULTS_SUFFIX = ":results"


def results_stream(queue_name: str) -> str:
    return f"{queue_name}{RESULTS_SUFFIX}"


async def enqueue(
    client: redis.Redis, queue_name: str, payload: dict, job_id: Optional[str] = None
) -> str:
    """向队列添加一个任务，返回任务 ID"""
    job_id = job_id or uuid.uuid4().hex
    await client.xadd(
        queue_name,
        {"job_id": job_id, "payload": json.dumps(payload, ensure_ascii=False), "attempts": "1"},
    )
    logger.debug(f"任务已入队 {queue_name}: {job_id}")
    return job_id


class QueueConsumer:
    """
    单个队列消费者

    每条消息包含 job_id / payload (JSON) / attempts 三个字段。处理结果写入
    `<queue>:results` 流。成功结果、失败结果或重新入队的消息写入 Redis
    之后原消息才会被 XACK，写入失败的消息保留在 pending 列表中。
    """

    def __init__(
        self,
        client: redis.Redis,
        queue_name: str,
        handler: JobHandler,
        group: str = DEFAULT_GROUP,
        consumer_name: Optional[str] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 5,
        block_ms: int = 5000,
    ):
        self.client = client
        self.queue_name = queue_name
        self.handler = handler
        self.group = group
        self.consumer_name = consumer_name or f"consumer-{uuid.uuid4().hex[:8]}"
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.block_ms = block_ms
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def ensure_group(self) -> None:
        try:
            await self.client.xgroup_create(self.queue_name, self.group, id="0", mkstream=True)
            logger.info(f"已创建消费组 {self.group} ({self.queue_name})")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def start(self) -> None:
        if self.is_running:
            logger.warning(f"消费者已在运行: {self.consumer_name}")
            return
        await self.ensure_group()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"队列消费者已启动: {self.queue_name} / {self.consumer_name}")

    async def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"消费者停止超时，取消任务: {self.consumer_name}")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"队列消费者已停止: {self.queue_name} / {self.consumer_name}")

    async def _run_loop(self) -> None:
        # 启动时先重新处理本消费者名下未确认的消息
        recover_pending = True
        while not self._stop_event.is_set():
            try:
                messages = await self.client.xreadgroup(
                    self.group,
                    self.consumer_name,
                    {self.queue_name: "0" if recover_pending else ">"},
                    count=1,
                    block=self.block_ms,
                )
                delivered = [m for _, stream_messages in messages or [] for m in stream_messages]
                if recover_pending and not delivered:
                    recover_pending = False
                for message_id, fields in delivered:
                    if not await self.handle_message(message_id, fields):
                        recover_pending = True
                        await asyncio.sleep(1)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"队列读取异常 ({self.queue_name}): {e}")
                await asyncio.sleep(1)

    async def handle_message(self, message_id: str, fields: Optional[dict]) -> bool:
        """
        处理一条消息

        结果或重新入队的消息写入 Redis 之后才 XACK；写入失败时消息留在
        pending 列表中，由同名消费者下次读取 pending 时重新处理

        Returns:
            消息是否已确认
        """
        if not fields:
            # 消息体已被裁剪，pending 中只剩 ID
            await self._ack(message_id)
            return True

        job_id = fields.get("job_id") or message_id
        try:
            await self._process(job_id, fields)
        except Exception as e:
            logger.error(f"任务 {job_id} 的结果写回失败，消息保留待重新处理: {e}")
            return False

        await self._ack(message_id)
        return True

    async def _process(self, job_id: str, fields: dict) -> None:
        attempts = int(fields.get("attempts") or 1)

        try:
            payload = json.loads(fields.get("payload") or "{}")
        except ValueError as e:
            logger.error(f"任务 {job_id} 的 payload 不是合法 JSON: {e}")
            await self._post_result(job_id, "failed", error=f"payload 解析失败: {e}")
            return

        try:
            result = await self.handler(payload)
        except Exception as e:
            await self._handle_failure(job_id, payload, attempts, e)
            return

        await self._post_result(job_id, "completed", result=result)

    async def _handle_failure(
        self, job_id: str, payload: dict, attempts: int, error: Exception
    ) -> None:
        retryable = getattr(error, "retryable", True)
        if retryable and attempts < self.max_attempts:
            delay = self.backoff_seconds * 2 ** (attempts - 1)
            logger.warning(
                f"任务 {job_id} 第 {attempts} 次执行失败: {error}，{delay} 秒后重试"
            )
            await asyncio.sleep(delay)
            await self.client.xadd(
                self.queue_name,
                {
                    "job_id": job_id,
                    "payload": json.dumps(payload, ensure_ascii=False),
                    "attempts": str(attempts + 1),
                },
            )
            return

        logger.error(f"任务 {job_id} 最终失败 (共 {attempts} 次): {error}")
        await self._post_result(
            job_id, "failed", error=str(error), reason=getattr(error, "reason", None)
        )

    async def _post_result(self, job_id: str, status: str, **fields: Any) -> None:
        body = {"job_id": job_id, "status": status}
        body.update({k: v for k, v in fields.items() if v is not None})
        await self.client.xadd(
            results_stream(self.queue_name),
            {"job_id": job_id, "status": status, "data": json.dumps(body, ensure_ascii=False)},
        )

    async def _ack(self, message_id: str) -> None:
        await self.client.xack(self.queue_name, self.group, message_id)
