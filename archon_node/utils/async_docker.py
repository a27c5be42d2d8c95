import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")

async def async_docker_call(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """在线程中执行阻塞的Docker SDK调用"""
    return await asyncio.to_thread(func, *args, **kwargs)
