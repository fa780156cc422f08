"""
Bounded FIFO cache for synthesized response audio.

Used on the server for raw MP3 bytes and on the client for playable
audio handles (temporary files).
"""
import logging
from collections import OrderedDict
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
KEY_TEXT_LENGTH = 100


class ResponseAudioCache:
    """
    Key -> audio cache with strict FIFO eviction.

    Keys are a fixed prefix, the voice id and the first 100 characters of the
    text. Two long texts sharing a 100 character prefix and a voice map to the
    same entry. Reading an entry does not refresh its position.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        key_prefix: str = "tts_",
        release: Optional[Callable[[Any], None]] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.key_prefix = key_prefix
        self._release = release
        self._entries: "OrderedDict[str, Any]" = OrderedDict()
        logger.info(f"ResponseAudioCache: Initialized (prefix '{key_prefix}', capacity {max_entries})")

    def make_key(self, text: str, voice_id: str) -> str:
        return f"{self.key_prefix}{voice_id}_{text[:KEY_TEXT_LENGTH]}"

    def get(self, text: str, voice_id: str) -> Optional[Any]:
        """Return the cached value, or None on a miss"""
        value = self._entries.get(self.make_key(text, voice_id))
        if value is None:
            logger.debug("ResponseAudioCache: Miss")
        else:
            logger.debug("ResponseAudioCache: Hit")
        return value

    def has(self, text: str, voice_id: str) -> bool:
        return self.make_key(text, voice_id) in self._entries

    def put(self, text: str, voice_id: str, value: Any):
        """
        Insert a value, evicting the oldest-inserted entry when full.

        Re-inserting an existing key replaces the value in place and keeps its
        original insertion position.
        """
        key = self.make_key(text, voice_id)

        if key in self._entries:
            previous = self._entries[key]
            self._entries[key] = value
            if previous is not value:
                self._release_value(previous)
            return

        while len(self._entries) >= self.max_entries:
            oldest_key, oldest = self._entries.popitem(last=False)
            self._release_value(oldest)
            logger.debug(f"ResponseAudioCache: Evicted '{oldest_key[:40]}'")

        self._entries[key] = value

    def clear(self):
        """Drop every entry, releasing held resources"""
        count = len(self._entries)
        while self._entries:
            _, value = self._entries.popitem(last=False)
            self._release_value(value)
        logger.info(f"ResponseAudioCache: Cleared {count} entries")

    def keys(self):
        """Cache keys in insertion order"""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def _release_value(self, value: Any):
        if self._release is None:
            return
        try:
            self._release(value)
        except Exception as e:
            logger.warning(f"ResponseAudioCache: Error releasing entry: {e}")
