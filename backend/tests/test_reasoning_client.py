import asyncio

import aiohttp
import pytest
from aiohttp import test_utils, web

from voicechat.errors import ServiceError
from voicechat.reasoning.client import ReasoningClient


async def serve(handler):
    app = web.Application()
    app.router.add_post("/api/chat", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


class TestReasoningClient:

    @pytest.mark.asyncio
    async def test_returns_response_text(self):
        received = []

        async def handler(request):
            received.append((request.content_type, await request.json()))
            return web.json_response({"response": "hi there"})

        server = await serve(handler)
        try:
            client = ReasoningClient(url=str(server.make_url("/api/chat")), timeout_s=5)
            reply = await client.ask("hello")
        finally:
            await server.close()

        assert reply == "hi there"
        assert received == [("application/json", {"prompt": "hello"})]

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        async def handler(request):
            return web.json_response({"error": "overloaded"}, status=503)

        server = await serve(handler)
        try:
            client = ReasoningClient(url=str(server.make_url("/api/chat")), timeout_s=5)
            with pytest.raises(ServiceError) as exc_info:
                await client.ask("hello")
        finally:
            await server.close()

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        b"not json at all",
        b'{"answer": "wrong key"}',
        b'{"response": 42}',
        b'["response"]',
        b'{"response": "\xff\xfe"}',
    ])
    async def test_malformed_payload_raises(self, body):
        async def handler(request):
            return web.Response(body=body, content_type="application/json")

        server = await serve(handler)
        try:
            client = ReasoningClient(url=str(server.make_url("/api/chat")), timeout_s=5)
            with pytest.raises(ServiceError):
                await client.ask("hello")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        async def handler(request):
            await asyncio.sleep(1)
            return web.json_response({"response": "too late"})

        server = await serve(handler)
        try:
            client = ReasoningClient(url=str(server.make_url("/api/chat")), timeout_s=0.1)
            with pytest.raises(ServiceError, match="timed out"):
                await client.ask("hello")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        async def handler(request):
            return web.Response()

        server = await serve(handler)
        url = str(server.make_url("/api/chat"))
        await server.close()

        client = ReasoningClient(url=url, timeout_s=2)
        with pytest.raises(ServiceError):
            await client.ask("hello")

    @pytest.mark.asyncio
    async def test_uses_injected_session(self):
        async def handler(request):
            return web.json_response({"response": "pooled"})

        server = await serve(handler)
        try:
            async with aiohttp.ClientSession() as session:
                client = ReasoningClient(url=str(server.make_url("/api/chat")), session=session)
                assert await client.ask("hello") == "pooled"
                assert not session.closed
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_injected_session_honours_timeout(self):
        async def handler(request):
            await asyncio.sleep(3)
            return web.json_response({"response": "too late"})

        server = await serve(handler)
        try:
            async with aiohttp.ClientSession() as session:
                client = ReasoningClient(
                    url=str(server.make_url("/api/chat")),
                    timeout_s=0.2,
                    session=session,
                )
                with pytest.raises(ServiceError, match="timed out"):
                    await asyncio.wait_for(client.ask("hello"), timeout=1.5)
        finally:
            await server.close()
