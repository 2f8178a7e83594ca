"""Tests for the chat session orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from agriassist.config import ChatConfig
from agriassist.exceptions import SessionError, ValidationError
from agriassist.session import ChatSession, SessionContext
from agriassist.transport import ChannelAdapter
from fakes import FakeConnector, FakeScheduler, settle


def run(coro):
    return asyncio.run(coro)


def make_session(context=None, *, config=None, on_chunk=None):
    connector = FakeConnector()
    scheduler = FakeScheduler()
    context = context or SessionContext(conversation_id="c-1", auth_token="tok")
    session = ChatSession(
        context,
        config or ChatConfig(),
        adapter=ChannelAdapter("ws://test/ws", connect=connector),
        scheduler=scheduler,
        on_chunk=on_chunk,
    )
    return session, connector, scheduler


async def connected_session(**kwargs):
    session, connector, scheduler = make_session(**kwargs)
    await session.connect()
    await settle()
    assert session.is_connected
    return session, connector, scheduler


class TestConnect:
    def test_connect_opens_against_context(self):
        async def scenario():
            session, connector, _ = make_session()
            await session.connect()
            assert session.is_connecting
            await settle()

            assert session.is_connected
            assert not session.is_connecting
            assert connector.urls == ["ws://test/ws/chat?session_id=c-1&token=tok"]
            await session.close()

        run(scenario())

    def test_connect_without_token_is_noop(self):
        async def scenario():
            session, connector, _ = make_session(SessionContext(conversation_id="c-1"))
            assert await session.connect() is None
            await settle()

            assert connector.urls == []
            assert not session.is_connected
            assert not session.is_connecting
            await session.close()

        run(scenario())

    def test_context_is_read_live(self):
        async def scenario():
            context = SessionContext(conversation_id=None, auth_token="old")
            session, connector, _ = make_session(context)
            await session.connect()
            assert connector.urls == []

            context.conversation_id = "c-9"
            context.auth_token = "fresh"
            await session.connect()
            await settle()

            assert connector.urls == ["ws://test/ws/chat?session_id=c-9&token=fresh"]
            await session.close()

        run(scenario())

    def test_async_context_manager(self):
        async def scenario():
            session, connector, _ = make_session()
            async with session:
                await settle()
                assert session.is_connected
            assert session.closed
            assert connector.last.closed_with == 1000

        run(scenario())


class TestSend:
    def test_send_on_open_connection_flushes_immediately(self):
        async def scenario():
            session, connector, _ = await connected_session()

            await session.send("Is it time to sow?", "ta")

            assert connector.last.sent_payloads == [
                {"type": "chat_message", "content": "Is it time to sow?", "language": "ta"}
            ]
            assert session.is_streaming
            assert session.pending_message is None
            await session.close()

        run(scenario())

    def test_default_language_from_config(self):
        async def scenario():
            session, connector, _ = await connected_session(config=ChatConfig(default_language="hi"))
            await session.send("hello")
            assert connector.last.sent_payloads[0]["language"] == "hi"
            await session.close()

        run(scenario())

    def test_send_while_disconnected_opens_and_flushes(self):
        async def scenario():
            session, connector, _ = make_session()

            await session.send("hello", "en")
            assert session.is_connecting
            assert session.pending_message.content == "hello"
            await settle()

            assert connector.last.sent_payloads == [
                {"type": "chat_message", "content": "hello", "language": "en"}
            ]
            assert session.pending_message is None
            await session.close()

        run(scenario())

    def test_only_latest_queued_message_is_delivered(self):
        async def scenario():
            session, connector, _ = make_session()
            connector.gate = asyncio.Event()

            await session.send("first", "en")
            await settle()
            await session.send("second", "en")
            assert len(connector.urls) == 1

            connector.gate.set()
            await settle()

            assert [p["content"] for p in connector.last.sent_payloads] == ["second"]
            await session.close()

        run(scenario())

    def test_blank_message_rejected(self):
        async def scenario():
            session, connector, _ = make_session()
            with pytest.raises(ValidationError):
                await session.send("   ")
            assert connector.urls == []
            await session.close()

        run(scenario())

    def test_unknown_language_rejected(self):
        async def scenario():
            session, _, _ = make_session()
            with pytest.raises(ValidationError):
                await session.send("hello", "fr")
            await session.close()

        run(scenario())

    def test_send_after_close_raises(self):
        async def scenario():
            session, _, _ = make_session()
            await session.close()
            with pytest.raises(SessionError):
                await session.send("hello")
            with pytest.raises(SessionError):
                await session.connect()

        run(scenario())


class TestConnectAndSend:
    def test_uses_explicit_id_and_sends_once(self):
        async def scenario():
            context = SessionContext(conversation_id=None, auth_token="tok")
            session, connector, _ = make_session(context)

            await session.connect_and_send("c-new", "first question", "hi")
            await settle()

            assert connector.urls == ["ws://test/ws/chat?session_id=c-new&token=tok"]
            assert connector.last.sent_payloads == [
                {"type": "chat_message", "content": "first question", "language": "hi"}
            ]
            assert session.snapshot().conversation_id == "c-new"
            await settle()
            assert len(connector.last.sent) == 1
            await session.close()

        run(scenario())

    def test_supersedes_existing_connection(self):
        async def scenario():
            session, connector, _ = await connected_session()
            old = connector.last

            await session.connect_and_send("c-2", "hello", "en")
            await settle()

            assert old.closed_with == 1000
            assert old.sent == []
            assert connector.last is not old
            assert len(connector.last.sent) == 1
            await session.close()

        run(scenario())


class TestStreaming:
    def test_tokens_concatenate_and_streaming_flips_once(self):
        async def scenario():
            chunks = []
            session, connector, _ = await connected_session(on_chunk=chunks.append)
            flags = []
            session.add_listener(lambda snap: flags.append(snap.is_streaming))

            await session.send("How much urea per acre?", "en")
            for token in ["About ", "50 ", "kg"]:
                connector.last.push_token(token)
            connector.last.push_complete()
            await settle()

            assert session.stream_buffer == "About 50 kg"
            assert not session.is_streaming
            transitions = sum(1 for a, b in zip(flags, flags[1:]) if a and not b)
            assert transitions == 1
            assert [c.type for c in chunks] == ["token", "token", "token", "complete"]
            await session.close()

        run(scenario())

    def test_clear_stream_empties_buffer(self):
        async def scenario():
            session, connector, _ = await connected_session()
            await session.send("hi", "en")
            connector.last.push_token("hello")
            connector.last.push_complete()
            await settle()

            session.clear_stream()

            assert session.stream_buffer == ""
            await session.close()

        run(scenario())

    def test_malformed_frames_are_ignored(self):
        async def scenario():
            session, connector, _ = await connected_session()
            await session.send("hi", "en")
            connector.last.push("not json at all")
            connector.last.push({"content": "no type"})
            connector.last.push_token("ok")
            await settle()

            assert session.stream_buffer == "ok"
            assert session.is_streaming
            assert session.is_connected
            assert session.last_error is None
            await session.close()

        run(scenario())

    def test_error_event_sets_last_error(self):
        async def scenario():
            session, connector, _ = await connected_session()
            await session.send("hi", "en")
            connector.last.push({"type": "error", "detail": "Model unavailable"})
            await settle()

            assert session.last_error == "Model unavailable"
            assert not session.is_streaming
            assert session.is_connected
            await session.close()

        run(scenario())

    def test_next_turn_clears_previous_error(self):
        async def scenario():
            session, connector, _ = await connected_session()
            await session.send("hi", "en")
            connector.last.push({"type": "error", "detail": "Model unavailable"})
            await settle()

            await session.send("again", "en")

            assert session.last_error is None
            await session.close()

        run(scenario())


class TestCloseHandling:
    def test_normal_close_is_not_retried(self):
        async def scenario():
            session, connector, scheduler = await connected_session()

            connector.last.server_close(1000)
            await settle()

            assert scheduler.timers == []
            assert not session.is_connected
            assert session.last_error is None
            await session.close()

        run(scenario())

    def test_policy_violation_sets_error_without_retry(self):
        async def scenario():
            session, connector, scheduler = await connected_session()

            connector.last.server_close(1008, "invalid token")
            await settle()

            assert scheduler.timers == []
            assert session.last_error == "Connection rejected by server: invalid token"

        run(scenario())

    def test_abnormal_close_schedules_retry(self):
        async def scenario():
            session, connector, scheduler = await connected_session()

            connector.last.drop()
            await settle()

            assert scheduler.delays == [2.0]
            assert not session.is_connected
            scheduler.fire()
            await settle()

            assert session.is_connected
            assert len(connector.urls) == 2
            assert session.reconnect.attempt_count == 0
            await session.close()

        run(scenario())

    def test_mid_turn_drop_abandons_partial_reply(self):
        async def scenario():
            session, connector, _ = await connected_session()
            await session.send("hi", "en")
            connector.last.push_token("half a rep")
            connector.last.drop()
            await settle()

            assert not session.is_streaming
            assert session.stream_buffer == ""
            await session.close()

        run(scenario())

    def test_backoff_exhausts_then_explicit_send_resets(self):
        async def scenario():
            session, connector, scheduler = await connected_session()
            connector.failures = 100

            connector.last.drop()
            await settle()
            for _ in range(5):
                scheduler.fire()
                await settle()

            assert scheduler.delays == [2.0, 4.0, 6.0, 8.0, 10.0]
            assert scheduler.armed == []
            assert session.reconnect.exhausted
            assert session.last_error == "Unable to reach the chat server after 5 attempts"
            assert len(connector.urls) == 6

            connector.failures = 0
            await session.send("anyone there?", "en")
            await settle()

            assert session.is_connected
            assert session.last_error is None
            assert session.reconnect.attempt_count == 0
            assert [p["content"] for p in connector.last.sent_payloads] == ["anyone there?"]
            await session.close()

        run(scenario())

    def test_close_cancels_pending_reconnect(self):
        async def scenario():
            session, connector, scheduler = await connected_session()
            connector.last.drop()
            await settle()
            assert len(scheduler.armed) == 1

            await session.close()

            assert scheduler.armed == []
            assert scheduler.timers[0].cancelled

        run(scenario())

    def test_close_returns_when_socket_close_fails(self):
        async def scenario():
            session, connector, _ = await connected_session()
            connector.last.close_error = AssertionError("inconsistent close state")

            await asyncio.wait_for(session.close(), timeout=1)

            assert session.connection is None
            assert connector.last.closed_with == 1000

        run(scenario())


class TestSupersession:
    def test_late_tokens_from_superseded_connection_are_ignored(self):
        async def scenario():
            context = SessionContext(conversation_id="c-1", auth_token="tok")
            session, connector, scheduler = await connected_session(context=context)
            old = connector.last
            old.hold_close = True

            context.conversation_id = "c-2"
            await session.connect()
            old.push_token("stale")
            old.push_complete()
            await settle()

            new = connector.last
            assert new is not old
            assert old.closed_with == 1000
            assert session.stream_buffer == ""

            await session.send("fresh question", "en")
            new.push_token("fresh")
            await settle()

            assert session.stream_buffer == "fresh"
            assert scheduler.timers == []

            old.drop()
            await settle()
            assert session.is_connected
            assert scheduler.timers == []
            await session.close()

        run(scenario())

    def test_disconnect_closes_without_reopening(self):
        async def scenario():
            session, connector, scheduler = await connected_session()

            await session.disconnect()
            await settle()

            assert connector.last.closed_with == 1000
            assert not session.is_connected
            assert len(connector.urls) == 1
            assert scheduler.timers == []
            await session.close()

        run(scenario())

    def test_listener_unsubscribe(self):
        async def scenario():
            session, _, _ = make_session()
            seen = []
            unsubscribe = session.add_listener(seen.append)
            await session.connect()
            unsubscribe()
            count = len(seen)
            await settle()

            assert count >= 1
            assert len(seen) == count
            await session.close()

        run(scenario())
