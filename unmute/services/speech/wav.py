"""WAV container helpers for raw call audio."""
import io
import wave
from typing import Iterable

# Media stream frames are 16-bit signed PCM, mono, 8 kHz
SAMPLE_RATE = 8000
SAMPLE_WIDTH = 2
CHANNELS = 1


def pcm16_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw PCM16 mono samples in a RIFF/WAVE container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(CHANNELS)
        wav_file.setsampwidth(SAMPLE_WIDTH)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


def chunks_to_wav(chunks: Iterable[bytes], sample_rate: int = SAMPLE_RATE) -> bytes:
    """Concatenate raw PCM16 chunks into one WAV file."""
    return pcm16_to_wav(b"".join(chunks), sample_rate)
