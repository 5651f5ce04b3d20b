"""Fan-out of one operation across an index range of hosts.

Every unit runs to completion. Failures are reported as they arrive and
only escalate to AggregateFanOutError once the whole batch has drained, so
each unit always gets to release its own session.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from sshfleet.errors import AggregateFanOutError
from sshfleet.models import ExecutionResult

if TYPE_CHECKING:
    from sshfleet.services.pool import ConnectionPool

logger = logging.getLogger(__name__)

HostOperation = Callable[[str], Awaitable[str | bytes | None]]
ResultCallback = Callable[[ExecutionResult], None]

_CLOSED = object()


class ParallelExecutor:
    """Scatters a per-host operation and gathers every outcome."""

    def __init__(
        self,
        resolve_host: Callable[[int], str],
        on_success: ResultCallback | None = None,
        on_failure: ResultCallback | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            resolve_host: Maps a fan-out index to a host name
            on_success: Called with each successful result as it arrives
            on_failure: Called with each failed result as it arrives
        """
        self.resolve_host = resolve_host
        self.on_success = on_success
        self.on_failure = on_failure

    async def _unit(
        self,
        index: int,
        op: HostOperation,
        results: asyncio.Queue,
    ) -> None:
        host = ""
        try:
            host = self.resolve_host(index)
            out = await op(host)
            if isinstance(out, bytes):
                out = out.decode("utf-8", errors="replace")
            result = ExecutionResult(index=index, host=host, output=out or "")
        except Exception as e:
            result = ExecutionResult(index=index, host=host, error=e)
        await results.put(result)

    async def _scatter(
        self, start: int, end: int, op: HostOperation
    ) -> tuple[asyncio.Queue, asyncio.Task]:
        """Start one task per index and a closer that marks the queue done."""
        count = max(0, end - start + 1)
        results: asyncio.Queue = asyncio.Queue(maxsize=count + 1)
        units = [
            asyncio.create_task(self._unit(i, op, results))
            for i in range(start, end + 1)
        ]

        async def close_when_done() -> None:
            await asyncio.gather(*units)
            await results.put(_CLOSED)

        return results, asyncio.create_task(close_when_done())

    async def execute(
        self, start: int, end: int, op: HostOperation
    ) -> list[ExecutionResult]:
        """Run op on every host in the inclusive index range.

        Returns:
            Successful results in arrival order.

        Raises:
            AggregateFanOutError: After all units finished, if any failed
            Exception: The first error raised by a result callback, after
                all units finished
        """
        results, closer = await self._scatter(start, end, op)
        successes: list[ExecutionResult] = []
        failures: list[ExecutionResult] = []
        callback_error: Exception | None = None

        while (result := await results.get()) is not _CLOSED:
            if result.error is not None:
                logger.error("%s: %s", result.host, result.error)
                failures.append(result)
                callback = self.on_failure
            else:
                logger.debug("Unit %d (%s) done", result.index, result.host)
                successes.append(result)
                callback = self.on_success
            if callback is None:
                continue
            try:
                callback(result)
            except Exception as e:
                logger.warning(
                    "Result callback failed for unit %d (%s): %s",
                    result.index,
                    result.host,
                    e,
                )
                if callback_error is None:
                    callback_error = e
        await closer

        if callback_error is not None:
            # Raised only once every unit has finished
            raise callback_error

        logger.info(
            "Fan-out %d..%d finished: %d succeeded, %d failed",
            start,
            end,
            len(successes),
            len(failures),
        )
        if failures:
            raise AggregateFanOutError(failures, successes)
        return successes

    async def collect(
        self, start: int, end: int, op: HostOperation
    ) -> list[ExecutionResult]:
        """Run op on every host and return all outcomes in index order.

        Never raises for unit failures; inspect ``ExecutionResult.error``.
        """
        results, closer = await self._scatter(start, end, op)
        collected: list[ExecutionResult] = []
        while (result := await results.get()) is not _CLOSED:
            collected.append(result)
        await closer
        return sorted(collected, key=lambda r: r.index)


def run_command(pool: "ConnectionPool", user: str, command: str) -> HostOperation:
    """Build a host operation that runs a shell command in its own session.

    The session is always released, whether the command succeeds or not.
    """

    async def op(host: str) -> str:
        session = await pool.get_session(user, host)
        async with session:
            result = await session.run(command)
        return result.output

    return op
