from __future__ import annotations

import asyncio
import io

import numpy as np
import soundfile as sf

from preload.errors import DecodeFailed
from preload.models import AudioBuffer


def _decode_sync(stimulus_id: int, data: bytes) -> AudioBuffer:
    if not data:
        raise DecodeFailed(stimulus_id, "empty payload")
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as exc:
        # soundfile.LibsndfileError subclasses RuntimeError
        raise DecodeFailed(stimulus_id, str(exc)) from exc
    if samples.shape[0] == 0:
        raise DecodeFailed(stimulus_id, "no audio frames")
    return AudioBuffer(
        stimulus_id=stimulus_id,
        samples=np.ascontiguousarray(samples, dtype=np.float32),
        sample_rate=int(sample_rate),
    )


async def decode_audio(stimulus_id: int, data: bytes) -> AudioBuffer:
    """Decode raw container bytes off the event loop."""
    return await asyncio.to_thread(_decode_sync, stimulus_id, data)
