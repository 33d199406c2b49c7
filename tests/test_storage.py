"""
Shared Directory Tests
"""

import os

import pytest

from tcpshare.errors import UnsafeName, TransferIOError
from tcpshare.file import SharedDirectory, open_destination, remove_quietly
from tcpshare.transfer import FileEntry


@pytest.fixture
def mixed_dir(tmp_path):
    root = tmp_path / 'share'
    root.mkdir()
    (root / 'b.txt').write_bytes(b'bb')
    (root / 'A.txt').write_bytes(b'a')
    (root / 'c.txt').write_bytes(b'ccc')
    (root / 'empty.dat').write_bytes(b'')
    (root / '.hidden').write_bytes(b'secret')
    (root / 'subdir').mkdir()
    (root / 'subdir' / 'nested.txt').write_bytes(b'nested')
    return root


class TestListing:
    """Tests for SharedDirectory.list_files."""

    @pytest.mark.asyncio
    async def test_order_and_filtering(self, mixed_dir):
        """Test case-insensitive order, no hidden files, no directories."""
        files = await SharedDirectory(mixed_dir).list_files()

        assert files == [
            FileEntry('A.txt', 1),
            FileEntry('b.txt', 2),
            FileEntry('c.txt', 3),
            FileEntry('empty.dat', 0),
        ]

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path):
        """Test an empty directory lists nothing."""
        assert await SharedDirectory(tmp_path).list_files() == []

    @pytest.mark.asyncio
    async def test_stats(self, mixed_dir):
        """Test file count and total size."""
        stats = await SharedDirectory(mixed_dir).get_stats()
        assert stats.file_count == 4
        assert stats.total_bytes == 6

    def test_exists(self, tmp_path):
        assert SharedDirectory(tmp_path).exists()
        assert not SharedDirectory(tmp_path / 'nope').exists()


class TestResolve:
    """Tests for safe name resolution."""

    def test_resolves_inside_root(self, mixed_dir):
        path = SharedDirectory(mixed_dir).resolve('A.txt')
        assert path == (mixed_dir / 'A.txt').resolve()

    @pytest.mark.parametrize('name', ['../../etc/passwd', '..', '/etc/passwd',
                                      'subdir/nested.txt', ''])
    def test_rejects_traversal(self, mixed_dir, name):
        """Test names that leave the directory are refused."""
        with pytest.raises(UnsafeName):
            SharedDirectory(mixed_dir).resolve(name)

    def test_rejects_symlink_escape(self, mixed_dir, tmp_path):
        """Test a symlink pointing outside the share is refused."""
        outside = tmp_path / 'outside.txt'
        outside.write_bytes(b'private')
        os.symlink(outside, mixed_dir / 'link.txt')

        with pytest.raises(UnsafeName):
            SharedDirectory(mixed_dir).resolve('link.txt')

    @pytest.mark.asyncio
    async def test_stat_file(self, mixed_dir):
        path, size = await SharedDirectory(mixed_dir).stat_file('c.txt')
        assert path.name == 'c.txt'
        assert size == 3

    @pytest.mark.asyncio
    async def test_stat_missing_or_directory(self, mixed_dir):
        """Test missing files and directories are not found."""
        shared = SharedDirectory(mixed_dir)
        with pytest.raises(FileNotFoundError):
            await shared.stat_file('missing.txt')
        with pytest.raises(FileNotFoundError):
            await shared.stat_file('subdir')


class TestDestination:
    """Tests for download destination handling."""

    @pytest.mark.asyncio
    async def test_creates_directory(self, tmp_path):
        """Test the destination directory is created on demand."""
        directory = tmp_path / 'new' / 'deeper'
        path, handle = await open_destination(directory, 'a.txt')
        await handle.write(b'data')
        await handle.close()

        assert path == directory / 'a.txt'
        assert path.read_bytes() == b'data'

    @pytest.mark.asyncio
    async def test_unsafe_name(self, tmp_path):
        with pytest.raises(UnsafeName):
            await open_destination(tmp_path, '../escape.txt')

    @pytest.mark.asyncio
    async def test_directory_is_a_file(self, tmp_path):
        """Test a blocked destination directory raises TransferIOError."""
        blocker = tmp_path / 'blocker'
        blocker.write_bytes(b'')
        with pytest.raises(TransferIOError):
            await open_destination(blocker, 'a.txt')

    @pytest.mark.asyncio
    async def test_remove_quietly(self, tmp_path):
        target = tmp_path / 'gone.txt'
        target.write_bytes(b'x')
        await remove_quietly(target)
        await remove_quietly(target)
        assert not target.exists()
