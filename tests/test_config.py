"""
Configuration Tests
"""

from pathlib import Path

import pytest

from config import Config, load_config
from tcpshare.transfer.protocol import CHUNK_SIZE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of these tests."""
    for key in ['TCPSHARE_HOST', 'TCPSHARE_PORT', 'TCPSHARE_SERVER_HOST',
                'TCPSHARE_SHARED_DIR', 'TCPSHARE_DOWNLOAD_DIR', 'TCPSHARE_CHUNK_SIZE',
                'TCPSHARE_MAX_LIST_SIZE', 'TCPSHARE_CONNECT_TIMEOUT', 'TCPSHARE_LOG_LEVEL']:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    """Tests for Config loading."""

    def test_defaults(self):
        config = Config()
        assert config.port == 8000
        assert config.connect_timeout == 5.0
        assert config.chunk_size == CHUNK_SIZE

    def test_from_env(self, monkeypatch):
        """Test TCPSHARE_* variables are read."""
        monkeypatch.setenv('TCPSHARE_PORT', '9100')
        monkeypatch.setenv('TCPSHARE_SHARED_DIR', '/srv/share')
        monkeypatch.setenv('TCPSHARE_CONNECT_TIMEOUT', '1.5')

        config = Config.from_env()
        assert config.port == 9100
        assert config.shared_dir == Path('/srv/share')
        assert config.connect_timeout == 1.5

    def test_save_and_load(self, tmp_path):
        """Test a saved file loads back the same values."""
        path = tmp_path / 'config.json'
        saved = Config(port=9001, download_dir=Path('dl'), log_level='DEBUG')
        saved.save(path)

        loaded = Config.from_file(path)
        assert loaded.to_dict() == saved.to_dict()

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.from_file(tmp_path / 'nope.json').to_dict() == Config().to_dict()

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Test environment variables win over the config file."""
        path = tmp_path / 'config.json'
        Config(port=9001, server_host='10.0.0.1').save(path)
        monkeypatch.setenv('TCPSHARE_PORT', '9002')

        config = load_config(path)
        assert config.port == 9002
        assert config.server_host == '10.0.0.1'
