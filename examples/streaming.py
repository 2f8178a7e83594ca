"""Streaming example: print reply tokens as they arrive."""

import asyncio
import os

from agriassist import ChatAPI, ChatConfig, ChatController, ChatSession, SessionContext, StreamChunk


def print_chunk(chunk: StreamChunk) -> None:
    if chunk.type == "token":
        print(chunk.delta, end="", flush=True)
    elif chunk.type == "complete":
        print("\n\n--- Complete ---")
    elif chunk.type == "error":
        print(f"\n[server error] {chunk.error}")


async def main():
    token = os.environ["AGRIASSIST_TOKEN"]
    config = ChatConfig.load()
    context = SessionContext(auth_token=token)

    async with ChatAPI(token, config) as api:
        session = ChatSession(context, config, on_chunk=print_chunk)
        controller = ChatController(api, session)
        try:
            await controller.submit("What is the best time to sow mustard?", "en")
            await controller.wait_for_reply(timeout=120, raise_on_error=True)
            print(f"conversation: {context.conversation_id}")
        finally:
            await session.close()


if __name__ == "__main__":
    asyncio.run(main())
