from __future__ import annotations

import asyncio
import logging
import time

from bot_talker.errors import ConnectivityError, GatewayError
from bot_talker.exchange.gateway import ExchangeGateway
from bot_talker.types import SyncReport

logger = logging.getLogger("bot_talker.connectivity")

DEFAULT_WARN_OFFSET_MS = 50


class ConnectivityChecker:
    """
    Advisory clock-sync check against the exchange server time.

    A slow or unreachable exchange is reported, never raised, unless the caller
    asks for it with `raise_for_status`.
    """

    def __init__(
        self,
        *,
        gateway: ExchangeGateway,
        warn_offset_ms: int = DEFAULT_WARN_OFFSET_MS,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._gateway = gateway
        self._warn_offset_ms = warn_offset_ms
        self._timeout_seconds = timeout_seconds

    async def check_sync(self) -> SyncReport:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                server_ms = await self._gateway.server_time_ms()
        except TimeoutError:
            return self._unreachable(f"server time timed out after {self._timeout_seconds}s")
        except GatewayError as e:
            return self._unreachable(e.message)

        local_ms = int(time.time() * 1000)
        offset_ms = server_ms - local_ms
        status = "ok" if abs(offset_ms) < self._warn_offset_ms else "slow"
        report = SyncReport(
            status=status,
            offset_ms=offset_ms,
            server_time_ms=server_ms,
            local_time_ms=local_ms,
        )
        if report.ok:
            logger.info("clock_sync_ok", extra={"offset_ms": offset_ms, "status": status})
        else:
            logger.warning(
                "clock_sync_slow",
                extra={"offset_ms": offset_ms, "status": status},
            )
        return report

    def _unreachable(self, reason: str) -> SyncReport:
        logger.error("exchange_unreachable", extra={"status": "unreachable", "reason": reason})
        return SyncReport(status="unreachable", error=reason)


def raise_for_status(report: SyncReport) -> None:
    if report.status == "unreachable":
        raise ConnectivityError(report.error or "exchange unreachable")
    if report.status == "slow":
        raise ConnectivityError(f"clock offset {report.offset_ms}ms exceeds threshold")
