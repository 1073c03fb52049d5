"""Unit tests for speaking typed text on a live call."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from unmute.services.call_session.models import CallSession, CallStatus
from unmute.services.errors import CallNotInProgressError, UpstreamError

BASE_URL = "https://unmute.example"


@pytest.fixture
def live_call(call_store):
    """A connected call owned by user 1."""
    return call_store.add(
        CallSession(
            call_sid="CA_live",
            user_id=1,
            phone_number="+15551234567",
            voice_model="onyx",
            speech_speed=1.1,
            status=CallStatus.CONNECTED,
        )
    )


class TestSpeakApi:
    """Test the speak endpoint."""

    def start_call(self, client):
        """Place a call and let Twilio report it answered."""
        response = client.post("/api/call/start", json={"phoneNumber": "+15551234567", "voiceModel": "nova"})
        call_sid = response.json()["callSid"]
        client.post("/api/call/status", data={"CallSid": call_sid, "CallStatus": "in-progress"})
        return call_sid

    def test_speak(self, authenticated_client, call_store, broadcaster, mock_telephony, mock_openai):
        call_sid = self.start_call(authenticated_client)

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "can you hear me"})

        assert response.status_code == 200
        body = response.json()
        assert body["text"] == "Can you hear me."
        assert body["audioUrl"].startswith("http://testserver/temp-audio/speech_")

        transcript = call_store.get(call_sid).transcript
        assert [(entry.text, entry.is_user) for entry in transcript] == [("Can you hear me.", True)]
        assert broadcaster.named("speech-audio") == [
            {"callSid": call_sid, "audioUrl": body["audioUrl"], "text": "Can you hear me."}
        ]
        assert mock_openai.audio.speech.create.call_args.kwargs["voice"] == "nova"

        sid, document = mock_telephony.update_instructions.call_args.args
        assert sid == call_sid
        assert f"<Play loop=\"1\">{body['audioUrl']}</Play>" in document
        assert 'speechTimeout="auto"' in document
        assert 'action="http://testserver/api/call/transcribe"' in document

    def test_speak_refused_when_call_not_in_progress(
        self, authenticated_client, call_store, mock_telephony, mock_openai
    ):
        call_sid = self.start_call(authenticated_client)
        # The store still believes the call is live
        assert call_store.get(call_sid).status == CallStatus.CONNECTED
        mock_telephony.fetch_call_status.return_value = "completed"

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "hello"})

        assert response.status_code == 400
        assert response.json()["detail"] == {"message": "Call is not in-progress", "status": "completed"}
        assert call_store.get(call_sid).transcript == []
        mock_openai.audio.speech.create.assert_not_awaited()
        mock_telephony.update_instructions.assert_not_awaited()

    def test_call_ends_while_speaking(self, authenticated_client, mock_telephony):
        call_sid = self.start_call(authenticated_client)
        mock_telephony.fetch_call_status.side_effect = ["in-progress", "completed"]

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "hello"})

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Call is no longer in-progress"
        mock_telephony.update_instructions.assert_not_awaited()

    def test_play_on_call_only_false(self, authenticated_client, mock_telephony):
        call_sid = self.start_call(authenticated_client)

        authenticated_client.post(
            "/api/call/speak", json={"callSid": call_sid, "text": "hello", "playOnCallOnly": False}
        )

        _, document = mock_telephony.update_instructions.call_args.args
        assert "<Play" not in document
        assert "<Gather" in document

    def test_speak_refused_while_ringing(self, authenticated_client, call_store, mock_telephony, mock_openai):
        response = authenticated_client.post("/api/call/start", json={"phoneNumber": "+15551234567"})
        call_sid = response.json()["callSid"]

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "hello"})

        assert response.status_code == 400
        assert response.json()["detail"] == {"message": "Call is not in-progress", "status": "ringing"}
        assert call_store.get(call_sid).transcript == []
        mock_openai.chat.completions.create.assert_not_awaited()
        mock_telephony.fetch_call_status.assert_not_awaited()

    def test_missing_text(self, authenticated_client):
        call_sid = self.start_call(authenticated_client)

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid})

        assert response.status_code == 400

    def test_unknown_call(self, authenticated_client):
        response = authenticated_client.post("/api/call/speak", json={"callSid": "CA_unknown", "text": "hi"})

        assert response.status_code == 404

    def test_status_check_failure(self, authenticated_client, mock_telephony):
        call_sid = self.start_call(authenticated_client)
        mock_telephony.fetch_call_status.side_effect = UpstreamError("Failed to check call status", "timeout")

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "hi"})

        assert response.status_code == 500
        assert response.json()["detail"]["message"] == "Failed to check call status"

    def test_synthesis_failure(self, authenticated_client, mock_openai, mock_telephony):
        call_sid = self.start_call(authenticated_client)
        mock_openai.audio.speech.create = AsyncMock(side_effect=RuntimeError("quota exceeded"))

        response = authenticated_client.post("/api/call/speak", json={"callSid": call_sid, "text": "hi"})

        assert response.status_code == 500
        assert response.json()["detail"] == {"message": "TTS synthesis failed", "error": "quota exceeded"}
        mock_telephony.update_instructions.assert_not_awaited()


class TestSpeakOrdering:
    """Test per-call serialization of speak requests."""

    @pytest.mark.asyncio
    async def test_concurrent_speaks_keep_submission_order(self, session_manager, live_call, mock_openai):
        async def uneven_format(model, messages, **kwargs):
            text = messages[-1]["content"]
            # The first request formats slowest
            await asyncio.sleep({"first": 0.05, "second": 0.0, "third": 0.01}[text])
            return Mock(choices=[Mock(message=Mock(content=text.capitalize() + "."))])

        mock_openai.chat.completions.create = AsyncMock(side_effect=uneven_format)

        results = await asyncio.gather(
            session_manager.speak("CA_live", "first", base_url=BASE_URL),
            session_manager.speak("CA_live", "second", base_url=BASE_URL),
            session_manager.speak("CA_live", "third", base_url=BASE_URL),
        )

        assert [result.text for result in results] == ["First.", "Second.", "Third."]
        assert [entry.text for entry in live_call.transcript] == ["First.", "Second.", "Third."]

    @pytest.mark.asyncio
    async def test_uses_session_voice_and_speed(self, session_manager, live_call, mock_openai):
        await session_manager.speak("CA_live", "hello", base_url=BASE_URL)

        kwargs = mock_openai.audio.speech.create.call_args.kwargs
        assert kwargs["voice"] == "onyx"
        assert kwargs["speed"] == 1.1

    @pytest.mark.asyncio
    async def test_override_voice_and_speed(self, session_manager, live_call, mock_openai):
        await session_manager.speak("CA_live", "hello", base_url=BASE_URL, voice_model="fable", speech_speed=0.8)

        kwargs = mock_openai.audio.speech.create.call_args.kwargs
        assert kwargs["voice"] == "fable"
        assert kwargs["speed"] == 0.8

    @pytest.mark.asyncio
    async def test_formatting_failure_uses_typed_text(self, session_manager, live_call, mock_openai):
        mock_openai.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))

        result = await session_manager.speak("CA_live", "hello there", base_url=BASE_URL)

        assert result.text == "hello there"
        assert result.formatted is False
        assert live_call.transcript[0].text == "hello there"

    @pytest.mark.asyncio
    async def test_refused_after_session_ended(self, session_manager, call_store, live_call, broadcaster, mock_openai):
        # Twilio can still report in-progress for a moment after we finalize
        await session_manager.finalize(live_call)

        with pytest.raises(CallNotInProgressError) as exc_info:
            await session_manager.speak("CA_live", "too late", base_url=BASE_URL)

        assert exc_info.value.status == "ended"
        assert live_call.transcript == []
        mock_openai.chat.completions.create.assert_not_awaited()
        mock_openai.audio.speech.create.assert_not_awaited()
        assert broadcaster.named("speech-audio") == []
