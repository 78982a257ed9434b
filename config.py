"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

from warp.session import ServerSettings
from warp.transfer.protocol import (
    BUFFER_SIZE, IDLE_TIMEOUT, MAX_UPLOAD_SIZE, READ_TIMEOUT, WRITE_TIMEOUT,
)


@dataclass
class Config:
    """
    warp configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (WARP_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 0  # 0 = random free port

    # Host mode
    upload_dir: Path = field(default_factory=lambda: Path('.'))
    max_upload_size: int = MAX_UPLOAD_SIZE

    # Performance
    buffer_size: int = BUFFER_SIZE
    buffer_pool_size: int = 16

    # Timeouts (seconds)
    read_timeout: float = READ_TIMEOUT
    write_timeout: float = WRITE_TIMEOUT
    idle_timeout: float = IDLE_TIMEOUT

    # Discovery
    discovery: bool = True
    discovery_timeout: float = 3.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('WARP_HOST', config.host)
        config.port = int(os.getenv('WARP_PORT', config.port))

        # Host mode
        upload_dir = os.getenv('WARP_UPLOAD_DIR')
        if upload_dir:
            config.upload_dir = Path(upload_dir)
        config.max_upload_size = int(os.getenv('WARP_MAX_UPLOAD_SIZE', config.max_upload_size))

        # Performance
        config.buffer_size = int(os.getenv('WARP_BUFFER_SIZE', config.buffer_size))

        # Timeouts
        config.read_timeout = float(os.getenv('WARP_READ_TIMEOUT', config.read_timeout))
        config.write_timeout = float(os.getenv('WARP_WRITE_TIMEOUT', config.write_timeout))
        config.idle_timeout = float(os.getenv('WARP_IDLE_TIMEOUT', config.idle_timeout))

        # Discovery
        config.discovery = os.getenv('WARP_DISCOVERY', 'true').lower() == 'true'

        # Logging
        config.log_level = os.getenv('WARP_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        # Host mode
        if 'upload_dir' in data:
            config.upload_dir = Path(data['upload_dir'])
        config.max_upload_size = data.get('max_upload_size', config.max_upload_size)

        # Performance
        config.buffer_size = data.get('buffer_size', config.buffer_size)
        config.buffer_pool_size = data.get('buffer_pool_size', config.buffer_pool_size)

        # Timeouts
        config.read_timeout = data.get('read_timeout', config.read_timeout)
        config.write_timeout = data.get('write_timeout', config.write_timeout)
        config.idle_timeout = data.get('idle_timeout', config.idle_timeout)

        # Discovery
        config.discovery = data.get('discovery', config.discovery)
        config.discovery_timeout = data.get('discovery_timeout', config.discovery_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'upload_dir': str(self.upload_dir),
            'max_upload_size': self.max_upload_size,
            'buffer_size': self.buffer_size,
            'buffer_pool_size': self.buffer_pool_size,
            'read_timeout': self.read_timeout,
            'write_timeout': self.write_timeout,
            'idle_timeout': self.idle_timeout,
            'discovery': self.discovery,
            'discovery_timeout': self.discovery_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_settings(self) -> ServerSettings:
        """Immutable server limits for a session."""
        return ServerSettings(
            max_upload_size=self.max_upload_size,
            buffer_size=self.buffer_size,
            buffer_pool_size=self.buffer_pool_size,
            read_timeout=self.read_timeout,
            write_timeout=self.write_timeout,
            idle_timeout=self.idle_timeout,
        )


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'port', 'upload_dir', 'max_upload_size', 'buffer_size',
                'read_timeout', 'write_timeout', 'idle_timeout', 'discovery',
                'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config

