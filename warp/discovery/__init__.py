"""
Discovery Module - Session Discovery on LAN

Publishes the running session over mDNS and browses for other sessions.
"""

from .mdns import (
    SERVICE_TYPE, Advertisement, ServiceRecord, browse, instance_name, publish,
)

__all__ = [
    'SERVICE_TYPE',
    'Advertisement',
    'ServiceRecord',
    'browse',
    'instance_name',
    'publish',
]
