"""
Per-connection deadlines.

uvicorn bounds idle keep-alive connections but not a peer that stalls in
the middle of a body. This ASGI middleware bounds every body ``receive``
(until the request body is complete) and every ``send``; a stalled peer
raises ``asyncio.TimeoutError`` inside the handler's copy loop.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class DeadlineMiddleware:
    """Wrap receive/send of HTTP requests with read and write timeouts."""

    def __init__(self, app, read_timeout: float, write_timeout: float):
        self.app = app
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    async def __call__(self, scope, receive, send):
        if scope['type'] != 'http':
            await self.app(scope, receive, send)
            return

        body_done = False
        client = scope.get('client')

        async def timed_receive():
            nonlocal body_done
            if body_done:
                # Only disconnect notifications remain; those may take forever
                return await receive()
            try:
                message = await asyncio.wait_for(receive(), self.read_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Read deadline exceeded for {client}")
                raise
            if message['type'] != 'http.request' or not message.get('more_body', False):
                body_done = True
            return message

        async def timed_send(message):
            try:
                await asyncio.wait_for(send(message), self.write_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Write deadline exceeded for {client}")
                raise

        await self.app(scope, timed_receive, timed_send)
