"""TwiML generation.

Every document the orchestrator hands to Twilio is built here so the call
flow (play, gather, pause, record, stream) lives in one place.
"""
from typing import Optional

SAY_VOICE = "Polly.Joanna-Neural"

# Keeps the channel open between user messages (Twilio's max pause)
MAX_PAUSE_SECONDS = 3600

# Seconds of silence before a speech gather reports what it heard
GATHER_SILENCE_TIMEOUT = "2"

DISCLOSURE_MESSAGE = (
    "This call is from an AI generated voice from Unmute. The person you are speaking "
    "with is using a text-to-speech service. Please speak clearly."
)

FALLBACK_DISCLOSURE = (
    "This is an Unmute assisted call. The person you are speaking with is using text-to-speech."
)


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _attrs(**attrs) -> str:
    parts = []
    for key, value in attrs.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        parts.append(f'{key}="{escape_xml(value)}"')
    return (" " + " ".join(parts)) if parts else ""


def response(*verbs: str) -> str:
    """Wrap verbs in a TwiML <Response> document."""
    body = "\n".join(f"    {verb}" for verb in verbs)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
{body}
</Response>"""


def say(text: str, voice: str = SAY_VOICE) -> str:
    return f"<Say{_attrs(voice=voice)}>{escape_xml(text)}</Say>"


def play(url: str, loop: int = 1) -> str:
    return f"<Play{_attrs(loop=loop)}>{escape_xml(url)}</Play>"


def play_digits(digits: str) -> str:
    return f"<Play{_attrs(digits=digits)}/>"


def pause(length: int = 1) -> str:
    return f"<Pause{_attrs(length=length)}/>"


def gather(
    action_url: str,
    speech_timeout: str = GATHER_SILENCE_TIMEOUT,
    speech_model: Optional[str] = "enhanced",
    profanity_filter: Optional[bool] = False,
) -> str:
    return (
        f"<Gather{_attrs(input='speech', speechTimeout=speech_timeout, speechModel=speech_model, profanityFilter=profanity_filter, action=action_url, method='POST')}/>"
    )


def record(action_url: str, timeout: int = 5, play_beep: bool = False) -> str:
    return f"<Record{_attrs(action=action_url, timeout=timeout, transcribe=False, playBeep=play_beep)}/>"


def start_stream(stream_url: str, track: str = "inbound_track") -> str:
    return f"<Start><Stream{_attrs(url=stream_url, track=track)}/></Start>"


def keep_alive() -> str:
    """Hold the call open without doing anything."""
    return response(pause(MAX_PAUSE_SECONDS))


def continue_gathering(action_url: str) -> str:
    """Re-arm a fast speech gather and keep the call open afterwards."""
    return response(gather(action_url), pause(MAX_PAUSE_SECONDS))


def greeting(audio_url: str, stream_url: Optional[str] = None) -> str:
    """Start the live audio stream and play the synthesized disclosure."""
    verbs = []
    if stream_url:
        verbs.append(start_stream(stream_url))
    verbs.extend([play(audio_url), pause(1), pause(MAX_PAUSE_SECONDS)])
    return response(*verbs)


def greeting_fallback(action_url: str) -> str:
    """Spoken disclosure used when the synthesized greeting is unavailable."""
    return response(say(FALLBACK_DISCLOSURE), gather(action_url), pause(MAX_PAUSE_SECONDS))


def speak(audio_url: str, action_url: str, play_on_call: bool = True) -> str:
    """Play a user message on the call, then keep listening."""
    verbs = []
    if play_on_call:
        verbs.append(play(audio_url))
    verbs.append(gather(action_url, speech_timeout="auto", speech_model=None, profanity_filter=None))
    verbs.append(pause(MAX_PAUSE_SECONDS))
    return response(*verbs)


def record_next(action_url: str) -> str:
    """Record the next short segment of far-end audio."""
    return response(record(action_url), pause(MAX_PAUSE_SECONDS))


def dtmf(digits: str) -> str:
    return response(play_digits(digits))
