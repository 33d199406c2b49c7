"""
File Module - Shared Directory and Download Storage

Filesystem side of the transfer protocol.
"""

from .storage import SharedDirectory, DirectoryStats, open_destination, remove_quietly

__all__ = [
    'SharedDirectory',
    'DirectoryStats',
    'open_destination',
    'remove_quietly',
]
