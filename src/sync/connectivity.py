"""
Online/offline tracking for the sync manager
"""
import asyncio
import logging
from typing import Callable, Optional

import aiohttp

from utils.listeners import ListenerRegistry

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Single source of truth for connectivity.

    Status changes come from the platform (set_online), from the outcome of
    remote calls (report_success / report_failure) and, when a probe URL is
    configured, from a periodic HTTP health check. Listeners are called with
    the new status only when it actually changes.
    """

    def __init__(self, initial_online: bool = True, probe_url: Optional[str] = None,
                 probe_interval: float = 15, probe_timeout: float = 3.0):
        """
        Args:
            initial_online: Status assumed before any evidence arrives
            probe_url: URL polled with GET while started (None disables probing)
            probe_interval: Seconds between probes
            probe_timeout: Seconds before a probe counts as failed
        """
        self._online = initial_online
        self.probe_url = probe_url
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout
        self._listeners = ListenerRegistry("connectivity")
        self._probe_task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: Callable[[bool], object]) -> Callable[[], None]:
        return self._listeners.add(callback)

    def set_online(self, online: bool) -> bool:
        """
        Record a connectivity notification

        Returns:
            bool: True if the status changed
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        if online:
            logger.info("✅ Connectivity restored")
        else:
            logger.warning("⚠️ Connectivity lost, working offline")
        self._listeners.notify(online)
        return True

    def report_success(self):
        """A remote call succeeded"""
        self.set_online(True)

    def report_failure(self, error: Optional[BaseException] = None):
        """A remote call failed at the transport level"""
        if self._online:
            logger.debug(f"Remote call failed: {error}")
        self.set_online(False)

    async def probe(self) -> bool:
        """Run one health check against probe_url and record the outcome"""
        if not self.probe_url:
            return self._online

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        try:
            timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
            async with self._session.get(self.probe_url, timeout=timeout) as response:
                reachable = response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False

        self.set_online(reachable)
        return reachable

    async def _probe_loop(self):
        while True:
            await self.probe()
            await asyncio.sleep(self.probe_interval)

    def start(self):
        """Start the probe loop on the running event loop (no-op without a probe URL)"""
        if not self.probe_url or self._probe_task is not None:
            return
        self._probe_task = asyncio.get_running_loop().create_task(self._probe_loop())
        logger.info(f"🔄 Connectivity probe started: {self.probe_url} every {self.probe_interval}s")

    async def stop(self):
        """Stop probing and close the HTTP session"""
        task, self._probe_task = self._probe_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._session is not None:
            await self._session.close()
            self._session = None
