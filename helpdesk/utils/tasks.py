import asyncio


async def finish_task(task: asyncio.Task, timeout: float = 2.0) -> None:
    """Wait for a listener task that was told to stop; cancel it if it lingers."""
    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        task.cancel()
    except asyncio.CancelledError:
        # wait_for cancels ``task`` too when the caller is cancelled; that must propagate
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
