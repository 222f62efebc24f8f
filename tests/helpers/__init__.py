from .fakes import FakeDiscovery, FakeMetrics, RecordingEmitter, RecordingWriter, reassignment
from .inmemory_store import InMemoryStore

__all__ = [
    "FakeDiscovery",
    "FakeMetrics",
    "InMemoryStore",
    "RecordingEmitter",
    "RecordingWriter",
    "reassignment",
]
