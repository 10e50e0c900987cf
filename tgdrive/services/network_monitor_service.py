"""Network Monitor Service for tracking connectivity and connection quality"""

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp
import psutil

from tgdrive.config import ProbeEndpoint, settings
from tgdrive.models.file_record import utc_now
from tgdrive.models.network_status import NetworkQuality, NetworkStatus
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[NetworkStatus], Any]
Probe = Callable[[ProbeEndpoint], Awaitable[float]]


def classify_quality(
    success_count: int,
    avg_response_ms: float,
    fair_latency_ms: float = 5000,
    good_latency_ms: float = 2000,
) -> NetworkQuality:
    """
    Classify connection quality from probe results

    Args:
        success_count: Number of probes that answered in time
        avg_response_ms: Mean latency of the successful probes
        fair_latency_ms: Mean latency above which quality is fair
        good_latency_ms: Mean latency above which quality is good

    Returns:
        NetworkQuality tier (never offline, that comes from the platform signal)
    """
    if success_count <= 0:
        return NetworkQuality.POOR
    if success_count == 1 or avg_response_ms > fair_latency_ms:
        return NetworkQuality.FAIR
    if avg_response_ms > good_latency_ms:
        return NetworkQuality.GOOD
    return NetworkQuality.EXCELLENT


def platform_is_online() -> bool:
    """True if any non-loopback network interface is up"""
    try:
        interfaces = psutil.net_if_stats()
    except OSError as e:
        logger.warning(f"Could not read network interfaces: {e}")
        return True
    return any(stats.isup for name, stats in interfaces.items() if not name.startswith("lo"))


async def probe_endpoint(endpoint: ProbeEndpoint) -> float:
    """
    HEAD an endpoint and return its latency in milliseconds

    Any HTTP answer counts as reachable; transport errors and timeouts raise.
    """
    started = time.monotonic()
    timeout = aiohttp.ClientTimeout(total=endpoint.timeout)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.head(endpoint.url, allow_redirects=False):
            pass
    return (time.monotonic() - started) * 1000


class NetworkMonitorService:
    """Service for monitoring network connectivity and quality"""

    def __init__(
        self,
        config: Any = settings,
        probe: Optional[Probe] = None,
        platform_check: Optional[Callable[[], bool]] = None,
    ):
        self.config = config
        self._probe = probe or probe_endpoint
        self._platform_check = platform_check or platform_is_online
        self._listeners: List[Listener] = []
        self._status = NetworkStatus(is_online=True, quality=NetworkQuality.UNKNOWN)
        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._status.is_online

    @property
    def quality(self) -> NetworkQuality:
        return self._status.quality

    async def start(self):
        """Start the network monitoring service"""
        if self._running:
            logger.warning("Network monitor service is already running")
            return

        self._running = True
        if self._platform_check():
            await self.check_connection_quality()
        else:
            await self.handle_offline()
        self._monitor_task = asyncio.create_task(self._periodic_check())
        logger.info(
            f"Network monitor service started "
            f"(interval: {self.config.network_check_interval}s, "
            f"endpoints: {len(self.config.network_probe_endpoints)})"
        )

    async def stop(self):
        """Stop the network monitoring service"""
        self._running = False
        for task in (self._monitor_task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._monitor_task = None
        self._reconnect_task = None
        self._listeners.clear()

        logger.info("Network monitor service stopped")

    async def _periodic_check(self):
        """Periodically re-read the platform signal and re-probe quality"""
        while self._running:
            try:
                await asyncio.sleep(self.config.network_check_interval)

                platform_online = self._platform_check()
                if platform_online and not self._status.is_online:
                    await self.handle_online()
                elif not platform_online and self._status.is_online:
                    await self.handle_offline()
                elif platform_online:
                    await self.check_connection_quality()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic network check: {e}", exc_info=True)

    async def _run_probe(self, endpoint: ProbeEndpoint) -> float:
        return await asyncio.wait_for(self._probe(endpoint), timeout=endpoint.timeout)

    async def check_connection_quality(self) -> NetworkStatus:
        """
        Probe every reference endpoint in parallel and reclassify quality

        Does nothing while the platform reports no connectivity.

        Returns:
            The current NetworkStatus
        """
        if not self._status.is_online:
            return self._status

        endpoints = self.config.network_probe_endpoints
        started = time.monotonic()
        try:
            results = await asyncio.gather(
                *(self._run_probe(endpoint) for endpoint in endpoints),
                return_exceptions=True,
            )
            latencies = [r for r in results if not isinstance(r, BaseException)]
            if latencies:
                avg_response = sum(latencies) / len(latencies)
            else:
                avg_response = (time.monotonic() - started) * 1000

            quality = classify_quality(
                len(latencies),
                avg_response,
                self.config.network_fair_latency_ms,
                self.config.network_good_latency_ms,
            )
            status = NetworkStatus(
                is_online=True,
                quality=quality,
                timestamp=utc_now(),
                response_time=round(avg_response, 1),
                success_rate=len(latencies) / len(endpoints) if endpoints else 0.0,
                reconnect_attempts=self._status.reconnect_attempts,
            )
        except Exception as e:
            logger.error(f"Network quality check failed: {e}")
            status = NetworkStatus(
                is_online=self._status.is_online,
                quality=NetworkQuality.POOR,
                timestamp=utc_now(),
                reconnect_attempts=self._status.reconnect_attempts,
                error=str(e),
            )

        if status.quality != self._status.quality:
            logger.info(f"Network quality changed: {self._status.quality.value} -> {status.quality.value}")
        self._status = status
        await self._notify_listeners(status)
        return status

    async def add_listener(self, listener: Listener):
        """Register a listener and deliver the current status to it right away"""
        self._listeners.append(listener)
        await self._call_listener(listener, self._status)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _call_listener(self, listener: Listener, status: NetworkStatus):
        try:
            result = listener(status)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Network status listener failed: {e}", exc_info=True)

    async def _notify_listeners(self, status: NetworkStatus):
        for listener in list(self._listeners):
            await self._call_listener(listener, status)

    async def handle_online(self):
        """Platform reported connectivity again"""
        logger.info("Network connected")
        if self._reconnect_task and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self._status = self._status.model_copy(update={"is_online": True, "reconnect_attempts": 0})
        await self.check_connection_quality()

    async def handle_offline(self):
        """Platform reported loss of connectivity"""
        logger.warning("Network disconnected")
        self._status = NetworkStatus(
            is_online=False,
            quality=NetworkQuality.OFFLINE,
            timestamp=utc_now(),
            reconnect_attempts=self._status.reconnect_attempts,
        )
        await self._notify_listeners(self._status)

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _reconnect_delay(self, attempt: int) -> float:
        return min(
            self.config.network_reconnect_delay * (2 ** attempt),
            self.config.network_max_reconnect_delay,
        )

    async def _reconnect_loop(self):
        """Re-check connectivity with exponential backoff until it is back or attempts run out"""
        max_attempts = self.config.network_max_reconnect_attempts
        while self._status.reconnect_attempts < max_attempts:
            attempt = self._status.reconnect_attempts
            delay = self._reconnect_delay(attempt)
            logger.info(f"Reconnect attempt {attempt + 1}/{max_attempts} in {delay:.1f}s")
            await asyncio.sleep(delay)

            self._status = self._status.model_copy(update={"reconnect_attempts": attempt + 1})
            try:
                if self._platform_check():
                    self._status = self._status.model_copy(update={"is_online": True})
                    await self.check_connection_quality()
                    if self._status.quality not in (NetworkQuality.OFFLINE, NetworkQuality.POOR):
                        self._status = self._status.model_copy(update={"reconnect_attempts": 0})
                        logger.info("Network reconnected")
                        return
            except Exception as e:
                logger.error(f"Reconnect check failed: {e}")

        logger.warning("Maximum reconnect attempts reached, waiting for the next periodic check")

    async def force_check(self) -> NetworkStatus:
        """Run a quality check now, picking up platform transitions first"""
        platform_online = self._platform_check()
        if platform_online and not self._status.is_online:
            await self.handle_online()
        elif not platform_online and self._status.is_online:
            await self.handle_offline()
        else:
            await self.check_connection_quality()
        return self._status

    def get_status(self) -> NetworkStatus:
        return self._status
