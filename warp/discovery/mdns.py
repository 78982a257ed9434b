"""
mDNS Discovery

Design Decision: Service Discovery Protocol
============================================

Options Considered:
1. mDNS/DNS-SD (Zeroconf/Bonjour)
   - Zero configuration needed
   - Standard protocol (RFC 6762, 6763)
   - Browsable from phones and laptops alike
2. UDP broadcast
   - Simple, but our own format only

Decision: mDNS with the zeroconf library

Service Type: _warp._tcp.local.
- Instance name: warp-<first 6 token chars>
- TXT properties: mode ("send" | "host"), token, path
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Set

from zeroconf import IPVersion, ServiceInfo, ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_warp._tcp.local."
INSTANCE_PREFIX = "warp-"
RESOLVE_TIMEOUT_MS = 3000


@dataclass(frozen=True)
class ServiceRecord:
    """A warp session as seen on the local network."""
    name: str
    mode: str
    token: str
    path: str
    address: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.address}:{self.port}{self.path}"

    @property
    def service_name(self) -> str:
        return f"{self.name}.{SERVICE_TYPE}"

    def to_service_info(self) -> ServiceInfo:
        return ServiceInfo(
            SERVICE_TYPE,
            self.service_name,
            addresses=[socket.inet_aton(self.address)],
            port=self.port,
            properties={
                'mode': self.mode,
                'token': self.token,
                'path': self.path,
            },
            server=f"{socket.gethostname()}.local.",
        )

    @classmethod
    def from_service_info(cls, info: ServiceInfo) -> Optional['ServiceRecord']:
        """Build a record from resolved service info, None if it is not usable."""
        addresses = info.parsed_addresses(IPVersion.V4Only)
        if not addresses or not info.port:
            return None

        def prop(key: bytes) -> str:
            value = info.properties.get(key)
            return value.decode('utf-8', errors='replace') if value else ''

        name = info.name
        if name.endswith('.' + SERVICE_TYPE):
            name = name[:-len(SERVICE_TYPE) - 1]
        return cls(
            name=name,
            mode=prop(b'mode'),
            token=prop(b'token'),
            path=prop(b'path'),
            address=addresses[0],
            port=info.port,
        )


def instance_name(token: str) -> str:
    return f"{INSTANCE_PREFIX}{token[:6]}"


class Advertisement:
    """Handle on a published record; ``close()`` retracts it."""

    def __init__(self, zeroconf: AsyncZeroconf, info: ServiceInfo):
        self._zeroconf = zeroconf
        self._info = info
        self._closed = False

    @property
    def name(self) -> str:
        return self._info.name

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self._zeroconf.async_unregister_service(self._info)
        except Exception as e:
            logger.debug(f"Service unregister: {e}")
        try:
            await self._zeroconf.async_close()
        except Exception as e:
            logger.debug(f"Zeroconf close: {e}")
        logger.info(f"Retracted mDNS service: {self._info.name}")


async def publish(record: ServiceRecord) -> Advertisement:
    """
    Register ``record`` on the local network.

    Returns:
        Advertisement handle to retract the record on shutdown
    """
    zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
    info = record.to_service_info()
    try:
        await zeroconf.async_register_service(info)
    except BaseException:
        await zeroconf.async_close()
        raise
    logger.info(f"Registered mDNS service: {info.name}")
    return Advertisement(zeroconf, info)


async def browse(timeout: float = 3.0) -> List[ServiceRecord]:
    """
    Collect the warp sessions visible on the local network.

    Args:
        timeout: How long to listen for announcements (seconds)
    """
    zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
    names: Set[str] = set()

    def on_service_state_change(zeroconf, service_type, name, state_change):
        if state_change is ServiceStateChange.Removed:
            names.discard(name)
        else:
            names.add(name)

    browser = AsyncServiceBrowser(zeroconf.zeroconf, SERVICE_TYPE,
                                  handlers=[on_service_state_change])
    records: List[ServiceRecord] = []
    try:
        await asyncio.sleep(timeout)
        await browser.async_cancel()

        for name in sorted(names):
            info = AsyncServiceInfo(SERVICE_TYPE, name)
            if not await info.async_request(zeroconf.zeroconf, RESOLVE_TIMEOUT_MS):
                logger.debug(f"mDNS: could not resolve {name}")
                continue
            record = ServiceRecord.from_service_info(info)
            if record:
                records.append(record)
    finally:
        await zeroconf.async_close()

    logger.info(f"Discovered {len(records)} warp sessions")
    return records
