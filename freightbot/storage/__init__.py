from freightbot.storage.backends import InMemoryBackend, KeyValueBackend, RedisBackend

__all__ = ["KeyValueBackend", "RedisBackend", "InMemoryBackend"]
