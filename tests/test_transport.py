import asyncio
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict

from graph_bridge_mcp.dynamic.errors import TransportError
from graph_bridge_mcp.dynamic.transport import AiohttpTransport


class TestAiohttpTransport(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.seen = []

        async def echo(request: web.Request) -> web.Response:
            self.seen.append({
                "method": request.method,
                "raw_path": request.raw_path,
                "authorization": request.headers.get("Authorization"),
                "body": await request.read(),
            })
            headers = CIMultiDict([("ETag", "W/\"1\""), ("Vary", "Accept"), ("Vary", "Prefer")])
            return web.json_response({"ok": True}, status=201, headers=headers)

        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(1)
            return web.Response(text="late")

        app = web.Application()
        app.router.add_route("*", "/chats/{chat}/messages", echo)
        app.router.add_get("/slow", slow)
        self.server = TestServer(app)
        await self.server.start_server()
        self.transport = AiohttpTransport(timeout=5.0)

    async def asyncTearDown(self):
        await self.transport.close()
        await self.server.close()

    def url(self, path_and_query: str) -> str:
        # Built by hand so the percent-encoded path reaches the transport untouched.
        return f"http://{self.server.host}:{self.server.port}{path_and_query}"

    async def test_send_preserves_encoded_path(self):
        url = self.url("/chats/19%3Aabc/messages?$select=id,body")
        response = await self.transport.send(
            "POST", url, {"Authorization": "Bearer t", "Content-Type": "application/json"}, b'{"a":1}'
        )

        self.assertEqual(response.status, 201)
        self.assertEqual(response.content_type, "application/json")
        self.assertEqual(response.header("etag"), 'W/"1"')
        self.assertEqual(response.headers.getall("Vary"), ["Accept", "Prefer"])
        self.assertEqual(response.body, b'{"ok": true}')
        self.assertEqual(self.seen[0]["raw_path"], "/chats/19%3Aabc/messages?$select=id,body")
        self.assertEqual(self.seen[0]["authorization"], "Bearer t")
        self.assertEqual(self.seen[0]["body"], b'{"a":1}')

    async def test_timeout_is_a_transport_error(self):
        with self.assertRaises(TransportError) as ctx:
            await self.transport.send("GET", self.url("/slow"), {}, timeout=0.2)
        self.assertTrue(ctx.exception.timeout)

    async def test_connection_refused_is_a_transport_error(self):
        url = self.url("/chats/x/messages")
        await self.server.close()
        with self.assertRaises(TransportError) as ctx:
            await self.transport.send("GET", url, {})
        self.assertFalse(ctx.exception.timeout)


if __name__ == '__main__':
    unittest.main()
