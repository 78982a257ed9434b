"""
warp - quick file, directory and text transfer over the local network.
"""

from .session import (
    DirectoryPayload, FilePayload, Mode, ServerSettings, Session, TextPayload,
    UploadTarget,
)

__version__ = "1.0.0"

__all__ = [
    'DirectoryPayload',
    'FilePayload',
    'Mode',
    'ServerSettings',
    'Session',
    'TextPayload',
    'UploadTarget',
]
