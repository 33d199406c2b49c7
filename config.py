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

from tcpshare.transfer.protocol import CHUNK_SIZE, MAX_LIST_RESPONSE_SIZE


@dataclass
class Config:
    """
    File transfer configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (TCPSHARE_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8000
    server_host: str = '127.0.0.1'

    # Directories
    shared_dir: Path = field(default_factory=lambda: Path('./shared_files'))
    download_dir: Path = field(default_factory=lambda: Path('./downloads'))

    # Transfer
    chunk_size: int = CHUNK_SIZE
    max_list_size: int = MAX_LIST_RESPONSE_SIZE

    # Timeouts (seconds)
    connect_timeout: float = 5.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('TCPSHARE_HOST', config.host)
        config.port = int(os.getenv('TCPSHARE_PORT', config.port))
        config.server_host = os.getenv('TCPSHARE_SERVER_HOST', config.server_host)

        # Directories
        shared_dir = os.getenv('TCPSHARE_SHARED_DIR')
        if shared_dir:
            config.shared_dir = Path(shared_dir)
        download_dir = os.getenv('TCPSHARE_DOWNLOAD_DIR')
        if download_dir:
            config.download_dir = Path(download_dir)

        # Transfer
        config.chunk_size = int(os.getenv('TCPSHARE_CHUNK_SIZE', config.chunk_size))
        config.max_list_size = int(os.getenv('TCPSHARE_MAX_LIST_SIZE', config.max_list_size))

        # Timeouts
        config.connect_timeout = float(
            os.getenv('TCPSHARE_CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Logging
        config.log_level = os.getenv('TCPSHARE_LOG_LEVEL', config.log_level)

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
        config.server_host = data.get('server_host', config.server_host)

        # Directories
        if 'shared_dir' in data:
            config.shared_dir = Path(data['shared_dir'])
        if 'download_dir' in data:
            config.download_dir = Path(data['download_dir'])

        # Transfer
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.max_list_size = data.get('max_list_size', config.max_list_size)

        # Timeouts
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'server_host': self.server_host,
            'shared_dir': str(self.shared_dir),
            'download_dir': str(self.download_dir),
            'chunk_size': self.chunk_size,
            'max_list_size': self.max_list_size,
            'connect_timeout': self.connect_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


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
    for key in ['host', 'port', 'server_host', 'shared_dir', 'download_dir',
                'chunk_size', 'max_list_size', 'connect_timeout', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8000,
  "server_host": "127.0.0.1",
  "shared_dir": "./shared_files",
  "download_dir": "./downloads",
  "chunk_size": 65536,
  "max_list_size": 4194304,
  "connect_timeout": 5.0,
  "log_level": "INFO"
}
"""


if __name__ == "__main__":
    # Print example config
    print("Example configuration file (config.json):")
    print(EXAMPLE_CONFIG)
