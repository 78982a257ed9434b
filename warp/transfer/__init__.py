"""
Transfer Module - Downloads, Uploads and Archive Streaming

Handles the HTTP byte streams between a warp server and its peers.
"""

from .archive import iter_directory, stream_directory
from .buffers import BufferPool, BufferedSink
from .downloader import Receiver, Uploader, build_url, fetch, receive, upload
from .progress import ProgressCallback, TransferProgress, format_size
from .uploader import SavedUpload, UploadIngestor, sanitize_filename, unique_path

__all__ = [
    'iter_directory',
    'stream_directory',
    'BufferPool',
    'BufferedSink',
    'Receiver',
    'Uploader',
    'build_url',
    'fetch',
    'receive',
    'upload',
    'ProgressCallback',
    'TransferProgress',
    'format_size',
    'SavedUpload',
    'UploadIngestor',
    'sanitize_filename',
    'unique_path',
]
