"""
API Module - HTTP endpoint of a warp session
"""

from .rest import create_app, load_upload_page
from .middleware import DeadlineMiddleware

__all__ = [
    'create_app',
    'load_upload_page',
    'DeadlineMiddleware',
]
