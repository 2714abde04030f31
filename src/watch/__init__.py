from .watcher import DirectoryWatcher, SnapshotEventHandler

__all__ = ["DirectoryWatcher", "SnapshotEventHandler"]
