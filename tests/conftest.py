"""
Shared fixtures for the tcpshare test suite.
"""

import asyncio

import pytest
import pytest_asyncio

from tcpshare import ClientEngine, ServerEngine

A_CONTENT = b'hello world\n'
B_SIZE = 2 * 1024 * 1024


def b_content() -> bytes:
    return bytes(range(256)) * (B_SIZE // 256)


class EventRecorder:
    """Callback that keeps every event and lets tests wait for one."""

    def __init__(self):
        self.events = []
        self._seen = {}

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

    async def wait_for(self, event_type, timeout: float = 5.0):
        """Wait for the next not yet consumed event of event_type."""
        index = self._seen.get(event_type, 0)

        async def _wait():
            while True:
                matches = self.of_type(event_type)
                if len(matches) > index:
                    return matches[index]
                await asyncio.sleep(0.01)

        event = await asyncio.wait_for(_wait(), timeout)
        self._seen[event_type] = index + 1
        return event


@pytest.fixture
def shared_dir(tmp_path):
    directory = tmp_path / 'shared'
    directory.mkdir()
    (directory / 'a.txt').write_bytes(A_CONTENT)
    (directory / 'b.bin').write_bytes(b_content())
    return directory


@pytest.fixture
def download_dir(tmp_path):
    return tmp_path / 'out'


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest_asyncio.fixture
async def server(shared_dir):
    engine = ServerEngine(host='127.0.0.1')
    await engine.start(0, shared_dir)
    yield engine
    await engine.stop()


@pytest_asyncio.fixture
async def client(recorder):
    engine = ClientEngine(connect_timeout=2.0)
    engine.on_event(recorder)
    yield engine
    await engine.disconnect()
