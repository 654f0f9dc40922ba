"""Tests for SessionTracker."""
import asyncio

import pytest

from notesync.models.schema import UNDETERMINED, AuthEvent, Session
from notesync.services.session_tracker import SessionTracker
from tests.conftest import OTHER_USER, USER
from tests.fakes import BASE_TIME, FakeAuthProvider

pytestmark = pytest.mark.anyio


def recorder(tracker):
    seen = []
    tracker.subscribe(lambda event, session: seen.append((event, session)))
    return seen


class TestStart:

    async def test_undetermined_before_start(self, auth):
        tracker = SessionTracker(auth)
        assert tracker.current() is UNDETERMINED
        assert not tracker.determined
        assert not tracker.started

    async def test_undetermined_while_fetch_pending(self, auth):
        auth.session_gate = asyncio.Event()
        tracker = SessionTracker(auth)
        task = asyncio.create_task(tracker.start())
        await asyncio.sleep(0)

        assert tracker.current() is UNDETERMINED

        auth.session_gate.set()
        await task
        assert tracker.current() is None
        assert tracker.determined

    async def test_restores_existing_session(self, session):
        tracker = SessionTracker(FakeAuthProvider(session=session))
        await tracker.start()
        assert tracker.current() == session

    async def test_expired_session_counts_as_signed_out(self):
        expired = Session(user_id=USER, access_token="old", expires_at=BASE_TIME)
        tracker = SessionTracker(FakeAuthProvider(session=expired))
        await tracker.start()
        assert tracker.current() is None

    async def test_provider_queried_once(self, auth):
        tracker = SessionTracker(auth)
        await asyncio.gather(tracker.start(), tracker.start())
        await tracker.start()
        assert auth.calls.count(("get_current_session", ())) == 1
        assert auth.calls.count(("on_session_change", ())) == 1
        assert auth.listener_count == 1

    async def test_initial_session_event_delivered(self, session):
        tracker = SessionTracker(FakeAuthProvider(session=session))
        seen = recorder(tracker)
        await tracker.start()
        assert seen == [(AuthEvent.INITIAL_SESSION, session)]


class TestChanges:

    async def test_events_relayed_in_order(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        seen = recorder(tracker)
        refreshed = session.model_copy(update={"access_token": "token-2"})

        auth.emit(AuthEvent.SIGNED_IN, session)
        auth.emit(AuthEvent.TOKEN_REFRESHED, refreshed)
        auth.emit(AuthEvent.SIGNED_OUT, None)

        assert [event for event, _ in seen] == [
            AuthEvent.SIGNED_IN,
            AuthEvent.TOKEN_REFRESHED,
            AuthEvent.SIGNED_OUT,
        ]
        assert tracker.current() is None

    async def test_current_follows_latest_event(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        auth.emit(AuthEvent.SIGNED_IN, session)
        assert tracker.current() == session

    async def test_expired_session_in_event_signs_out(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        auth.emit(AuthEvent.SIGNED_IN, session)
        seen = recorder(tracker)

        stale = session.model_copy(update={"expires_at": BASE_TIME})
        auth.emit(AuthEvent.TOKEN_REFRESHED, stale)

        assert seen == [(AuthEvent.SIGNED_OUT, None)]
        assert tracker.current() is None

    async def test_generation_changes_with_identity_only(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        signed_out = tracker.generation

        auth.emit(AuthEvent.SIGNED_IN, session)
        signed_in = tracker.generation
        assert signed_in > signed_out

        auth.emit(AuthEvent.TOKEN_REFRESHED, session.model_copy(update={"access_token": "t2"}))
        assert tracker.generation == signed_in

        auth.emit(AuthEvent.SIGNED_IN, Session(user_id=OTHER_USER))
        assert tracker.generation > signed_in

    async def test_failing_listener_does_not_block_others(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()

        def broken(event, current):
            raise RuntimeError("listener bug")

        tracker.subscribe(broken)
        seen = recorder(tracker)
        auth.emit(AuthEvent.SIGNED_IN, session)
        assert seen == [(AuthEvent.SIGNED_IN, session)]

    async def test_unsubscribed_listener_gets_nothing(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        seen = []
        subscription = tracker.subscribe(lambda event, s: seen.append(event))
        subscription.unsubscribe()
        subscription.unsubscribe()

        auth.emit(AuthEvent.SIGNED_IN, session)
        assert seen == []
        assert not subscription.active


class TestStop:

    async def test_stop_deregisters(self, auth, session):
        tracker = SessionTracker(auth)
        await tracker.start()
        tracker.stop()
        tracker.stop()

        assert auth.listener_count == 0
        auth.emit(AuthEvent.SIGNED_IN, session)
        assert tracker.current() is None

    async def test_context_manager(self, auth):
        async with SessionTracker(auth) as tracker:
            assert tracker.started
            assert auth.listener_count == 1
        assert not tracker.started
        assert auth.listener_count == 0
