"""Audio fetching, decoding and look-ahead preloading for trial playback."""

from preload.errors import DecodeFailed, FetchFailed, InitialBatchFailed, LoadError, PreviouslyFailed
from preload.fetch import AudioFetcher, CachingFetcher, FileAudioFetcher, HttpAudioFetcher, HttpFetcherConfig
from preload.models import AudioBuffer, LoadProgress
from preload.scheduler import AudioPreloader

__all__ = [
    "AudioBuffer",
    "AudioFetcher",
    "AudioPreloader",
    "CachingFetcher",
    "DecodeFailed",
    "FetchFailed",
    "FileAudioFetcher",
    "HttpAudioFetcher",
    "HttpFetcherConfig",
    "InitialBatchFailed",
    "LoadError",
    "LoadProgress",
    "PreviouslyFailed",
]
