"""Unit tests for persistence services (users and call history)."""
from datetime import datetime, timedelta

import pytest

from unmute.services.persistence.calls import CallHistoryService
from unmute.services.persistence.users import UserService, hash_password, verify_password


async def create_call(service, user_id, call_sid="CA_persist_1", start_time=None):
    return await service.create_record(
        user_id=user_id,
        call_sid=call_sid,
        phone_number="+15551234567",
        start_time=start_time or datetime(2026, 3, 1, 9, 0, 0),
        voice_model="nova",
        speech_speed=1.0,
    )


class TestPasswordHashing:
    """Test password hashing functions."""

    def test_hash_is_salted(self):
        first = hash_password("testpassword123")
        second = hash_password("testpassword123")

        assert first != second
        assert first.startswith("pbkdf2_sha256$")

    def test_verify(self):
        hashed = hash_password("testpassword123")

        assert verify_password("testpassword123", hashed)
        assert not verify_password("wrongpassword", hashed)

    def test_verify_rejects_malformed_hash(self):
        assert not verify_password("anything", "not-a-hash")


class TestUserService:
    """Test user persistence."""

    @pytest.mark.asyncio
    async def test_create_user_stores_hash(self, test_db):
        user = await UserService(test_db).create_user("Ada", "Lovelace", "ada@example.com", "correct-horse")

        assert user.id is not None
        assert user.password != "correct-horse"
        assert user.created_at is not None

    @pytest.mark.asyncio
    async def test_authenticate(self, test_db, test_user):
        users = UserService(test_db)

        assert (await users.authenticate("ada@example.com", "correct-horse")).id == test_user.id
        assert await users.authenticate("ada@example.com", "wrong-horse") is None
        assert await users.authenticate("nobody@example.com", "correct-horse") is None


class TestCallHistoryService:
    """Test call history persistence."""

    @pytest.mark.asyncio
    async def test_create_record(self, test_db, test_user):
        record = await create_call(CallHistoryService(test_db), test_user.id)

        assert record.id is not None
        assert record.status == "ringing"
        assert record.speech_speed == "1.0"
        assert record.end_time is None

    @pytest.mark.asyncio
    async def test_create_record_idempotent(self, test_db, test_user):
        service = CallHistoryService(test_db)

        first = await create_call(service, test_user.id)
        second = await create_call(service, test_user.id)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_update_status(self, test_db, test_user):
        service = CallHistoryService(test_db)
        await create_call(service, test_user.id)

        record = await service.update_status("CA_persist_1", "connected")

        assert record.status == "connected"
        assert await service.update_status("CA_unknown", "connected") is None

    @pytest.mark.asyncio
    async def test_finalize(self, test_db, test_user):
        service = CallHistoryService(test_db)
        record = await create_call(service, test_user.id)
        transcript = [{"text": "Hello.", "isUser": True, "timestamp": "2026-03-01T09:00:05"}]

        await service.finalize(
            "CA_persist_1",
            end_time=record.start_time + timedelta(seconds=65),
            duration=65,
            transcript=transcript,
            summary="A short hello.",
        )

        record = await service.get_by_sid("CA_persist_1")
        assert record.status == "ended"
        assert record.duration == 65
        assert record.transcript == transcript
        assert record.summary == "A short hello."

    @pytest.mark.asyncio
    async def test_finalize_empty_transcript_stores_null(self, test_db, test_user):
        service = CallHistoryService(test_db)
        record = await create_call(service, test_user.id)

        await service.finalize("CA_persist_1", record.start_time, 0, [], None)

        record = await service.get_by_sid("CA_persist_1")
        assert record.transcript is None
        assert record.summary is None

    @pytest.mark.asyncio
    async def test_save_recording(self, test_db, test_user):
        service = CallHistoryService(test_db)
        await create_call(service, test_user.id)

        record = await service.save_recording("CA_persist_1", "/api/call/recording/CA_persist_1", "UklGRg==")

        assert record.recording_url == "/api/call/recording/CA_persist_1"
        assert record.recording_data == "UklGRg=="

    @pytest.mark.asyncio
    async def test_list_for_user_newest_first(self, test_db, test_user):
        service = CallHistoryService(test_db)
        other = await UserService(test_db).create_user("Bob", "Other", "bob@example.com", "password123")
        await create_call(service, test_user.id, "CA_old", datetime(2026, 1, 1))
        await create_call(service, test_user.id, "CA_new", datetime(2026, 2, 1))
        await create_call(service, other.id, "CA_other", datetime(2026, 3, 1))

        records = await service.list_for_user(test_user.id)

        assert [record.call_sid for record in records] == ["CA_new", "CA_old"]

    @pytest.mark.asyncio
    async def test_delete_scoped_to_owner(self, test_db, test_user):
        service = CallHistoryService(test_db)
        other = await UserService(test_db).create_user("Bob", "Other", "bob@example.com", "password123")
        record = await create_call(service, test_user.id)

        assert await service.delete_for_user(record.id, other.id) is False
        assert await service.delete_for_user(record.id, test_user.id) is True
        assert await service.get_by_sid("CA_persist_1") is None
