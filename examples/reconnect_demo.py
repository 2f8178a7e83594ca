"""Reconnect example: watch the session ride out dropped sockets.

Start a chat backend, run this script, then restart the backend. The status
line shows each scheduled reconnect (2, 4, 6, 8, 10 seconds) and recovery.
"""

import asyncio
import os

from agriassist import ChatConfig, ChatSession, SessionContext, SessionSnapshot


def show(snap: SessionSnapshot) -> None:
    state = "connected" if snap.is_connected else "connecting" if snap.is_connecting else "down"
    line = f"[{state}] attempts={snap.reconnect_attempts}"
    if snap.last_error:
        line += f" error={snap.last_error}"
    print(line)


async def main():
    context = SessionContext(
        conversation_id=os.environ["AGRIASSIST_CONVERSATION"],
        auth_token=os.environ["AGRIASSIST_TOKEN"],
    )
    session = ChatSession(context, ChatConfig.load())
    session.add_listener(show)

    async with session:
        while True:
            await asyncio.sleep(60)
            if session.last_error:
                # Reconnects ran out; an explicit send starts a new cycle.
                await session.send("Are you back?")


if __name__ == "__main__":
    asyncio.run(main())
