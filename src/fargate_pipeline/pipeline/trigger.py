"""Push-event dispatch: one queue and one consumer per branch."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from fargate_pipeline.pipeline.models import PushEvent

logger = logging.getLogger(__name__)

Handler = Callable[[PushEvent], Awaitable[Any]]


class TriggerDispatcher:
    """Queues push events so that at most one run per branch is active.

    Later events for a busy branch wait in that branch's queue; different
    branches run independently. Must be used from a running event loop.
    """

    def __init__(self, handler: Handler, branches: Optional[Iterable[str]] = None):
        self.handler = handler
        self.branches = set(branches) if branches is not None else None
        self._queues: Dict[str, asyncio.Queue] = {}
        self._consumers: Dict[str, asyncio.Task] = {}
        self._active: Dict[str, PushEvent] = {}

    def accepts(self, branch: str) -> bool:
        return self.branches is None or branch in self.branches

    def submit(self, event: PushEvent) -> bool:
        """Queue ``event``; returns False when its branch is filtered out."""
        if not self.accepts(event.branch):
            logger.info(f"Ignoring push to {event.branch}")
            return False
        queue = self._queues.get(event.branch)
        if queue is None:
            queue = self._queues[event.branch] = asyncio.Queue()
            self._consumers[event.branch] = asyncio.get_running_loop().create_task(
                self._consume(event.branch, queue), name=f"trigger-{event.branch}"
            )
        queue.put_nowait(event)
        logger.info(f"Queued {event.branch}@{event.revision or 'HEAD'} ({queue.qsize()} waiting)")
        return True

    async def _consume(self, branch: str, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            self._active[branch] = event
            # A cancelled run (rollout abort or timeout) ends only its own task
            run = asyncio.get_running_loop().create_task(
                self.handler(event), name=f"run-{branch}-{event.revision or 'HEAD'}"
            )
            try:
                await run
            except asyncio.CancelledError:
                if asyncio.current_task().cancelling():
                    run.cancel()
                    raise
                logger.warning(f"Run for {branch}@{event.revision or 'HEAD'} was cancelled")
            except Exception:
                # Keep the branch consumer alive for the events queued behind this one
                logger.exception(f"Handler failed for {branch}@{event.revision or 'HEAD'}")
            finally:
                self._active.pop(branch, None)
                queue.task_done()

    async def drain(self, branch: Optional[str] = None) -> None:
        """Wait until queued events (of ``branch``, or of every branch) are handled."""
        if branch is None:
            queues = list(self._queues.values())
        else:
            queues = [self._queues[branch]] if branch in self._queues else []
        for queue in queues:
            await queue.join()

    async def close(self) -> None:
        for task in self._consumers.values():
            task.cancel()
        await asyncio.gather(*self._consumers.values(), return_exceptions=True)
        self._consumers.clear()
        self._queues.clear()
        self._active.clear()

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            branch: {
                "queued": queue.qsize(),
                "active": branch in self._active,
                "revision": self._active[branch].revision if branch in self._active else None,
            }
            for branch, queue in self._queues.items()
        }
