"""Request and response bodies. JSON uses camelCase keys."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Auth

class SignupRequest(ApiModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class UserOut(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    created_at: Optional[datetime] = None


# Calls
# Required fields are optional here so the call manager reports them as 400s.

class StartCallRequest(ApiModel):
    phone_number: Optional[str] = None
    voice_model: Optional[str] = None
    speech_speed: Optional[float] = None


class CallRequest(ApiModel):
    call_sid: Optional[str] = None


class MuteRequest(CallRequest):
    mute: bool = True


class DtmfRequest(CallRequest):
    digits: Optional[str] = None


class SpeakRequest(CallRequest):
    text: Optional[str] = None
    voice_model: Optional[str] = None
    speech_speed: Optional[float] = None
    play_on_call_only: bool = True


class VoicePreviewRequest(ApiModel):
    text: Optional[str] = None
    voice_model: Optional[str] = None
    speech_speed: Optional[float] = None
    preferred_format: Optional[str] = None


class CallHistoryOut(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    user_id: int
    call_sid: str
    phone_number: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    voice_model: Optional[str] = None
    speech_speed: Optional[str] = None
    status: str
    transcript: Optional[List[dict]] = None
    summary: Optional[str] = None
    recording_url: Optional[str] = None
