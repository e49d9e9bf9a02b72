"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .file.chunker import CHUNK_SIZE
from .transfer.sender import DEFAULT_CHUNK_DELAY


@dataclass
class Config:
    """
    peerdrop configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PEERDROP_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8469
    api_host: str = '0.0.0.0'
    api_port: int = 8080
    connect_timeout: float = 10.0

    # Storage
    data_dir: Path = field(default_factory=lambda: Path('./peerdrop_data'))
    download_dir: Optional[Path] = None
    durable_max_bytes: Optional[int] = None

    # Transfer
    chunk_size: int = CHUNK_SIZE
    chunk_delay: float = DEFAULT_CHUNK_DELAY

    # Logging
    log_level: str = 'INFO'

    @property
    def downloads(self) -> Path:
        """Where received files are saved."""
        return Path(self.download_dir) if self.download_dir else Path(self.data_dir) / 'downloads'

    @property
    def store_db_path(self) -> Path:
        return Path(self.data_dir) / 'store.db'

    @property
    def store_index_path(self) -> Path:
        return Path(self.data_dir) / 'index.json'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('PEERDROP_HOST', config.host)
        config.port = int(os.getenv('PEERDROP_PORT', config.port))
        config.api_host = os.getenv('PEERDROP_API_HOST', config.api_host)
        config.api_port = int(os.getenv('PEERDROP_API_PORT', config.api_port))
        config.connect_timeout = float(
            os.getenv('PEERDROP_CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Storage
        data_dir = os.getenv('PEERDROP_DATA_DIR')
        if data_dir:
            config.data_dir = Path(data_dir)

        download_dir = os.getenv('PEERDROP_DOWNLOAD_DIR')
        if download_dir:
            config.download_dir = Path(download_dir)

        durable_max = os.getenv('PEERDROP_DURABLE_MAX_BYTES')
        if durable_max:
            config.durable_max_bytes = int(durable_max)

        # Transfer
        config.chunk_size = int(os.getenv('PEERDROP_CHUNK_SIZE', config.chunk_size))
        config.chunk_delay = float(os.getenv('PEERDROP_CHUNK_DELAY', config.chunk_delay))

        # Logging
        config.log_level = os.getenv('PEERDROP_LOG_LEVEL', config.log_level)

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
        config.api_host = data.get('api_host', config.api_host)
        config.api_port = data.get('api_port', config.api_port)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Storage
        if 'data_dir' in data:
            config.data_dir = Path(data['data_dir'])
        if data.get('download_dir'):
            config.download_dir = Path(data['download_dir'])
        config.durable_max_bytes = data.get('durable_max_bytes', config.durable_max_bytes)

        # Transfer
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.chunk_delay = data.get('chunk_delay', config.chunk_delay)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'api_host': self.api_host,
            'api_port': self.api_port,
            'connect_timeout': self.connect_timeout,
            'data_dir': str(self.data_dir),
            'download_dir': str(self.download_dir) if self.download_dir else None,
            'durable_max_bytes': self.durable_max_bytes,
            'chunk_size': self.chunk_size,
            'chunk_delay': self.chunk_delay,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Keys whose environment value overrides the file when it differs from the default
_ENV_OVERRIDABLE = [
    'host', 'port', 'api_host', 'api_port', 'connect_timeout',
    'data_dir', 'download_dir', 'durable_max_bytes',
    'chunk_size', 'chunk_delay', 'log_level',
]


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
    defaults = Config()

    # Merge (env takes precedence for non-default values)
    for key in _ENV_OVERRIDABLE:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8469,
  "api_host": "0.0.0.0",
  "api_port": 8080,
  "connect_timeout": 10.0,
  "data_dir": "./peerdrop_data",
  "download_dir": null,
  "durable_max_bytes": 104857600,
  "chunk_size": 16384,
  "chunk_delay": 0.01,
  "log_level": "INFO"
}
"""


if __name__ == "__main__":
    # Print example config
    print("Example configuration file (config.json):")
    print(EXAMPLE_CONFIG)
