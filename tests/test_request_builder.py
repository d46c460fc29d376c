import json
import unittest
from urllib.parse import parse_qsl, urlsplit

from graph_bridge_mcp.dynamic.descriptor_store import create_descriptor_from_config
from graph_bridge_mcp.dynamic.errors import ValidationError
from graph_bridge_mcp.dynamic.models import HTTPMethod
from graph_bridge_mcp.dynamic.request_builder import RequestBuilder
from graph_bridge_mcp.dynamic.schema_registry import RequestSchema

from fakes import BASE_URL, DESCRIPTORS, SCHEMAS


def descriptor(name):
    return create_descriptor_from_config(next(d for d in DESCRIPTORS if d["toolName"] == name))


def schema(name):
    return RequestSchema.from_artifact(name, SCHEMAS[name])


class TestRequestBuilder(unittest.TestCase):

    def setUp(self):
        self.builder = RequestBuilder(BASE_URL)

    def test_send_chat_message(self):
        """Path value is percent-encoded and the body is sent nested, not flattened."""
        args = {"chat-id": "19:abc", "body": {"body": {"contentType": "text", "content": "Hello!"}}}
        request = self.builder.build(descriptor("send-chat-message"), schema("send-chat-message"), args)

        self.assertEqual(request.method, HTTPMethod.POST)
        self.assertEqual(request.url, f"{BASE_URL}/chats/19%3Aabc/messages")
        self.assertEqual(request.body, b'{"body":{"contentType":"text","content":"Hello!"}}')
        self.assertEqual(request.headers["Content-Type"], "application/json")
        self.assertNotIn("Authorization", request.headers)

        headers = request.with_authorization("tok")
        self.assertEqual(headers["Authorization"], "Bearer tok")
        self.assertEqual(list(headers)[-1], "Authorization")

    def test_query_contains_only_non_empty_query_args(self):
        args = {"$top": 5, "$select": ["id", "subject"], "$filter": ""}
        request = self.builder.build(descriptor("list-messages"), schema("list-messages"), args)

        parts = urlsplit(request.url)
        self.assertEqual(parts.path, "/v1.0/me/messages")
        self.assertNotIn("{", request.url)
        self.assertEqual(parse_qsl(parts.query), [("$top", "5"), ("$select", "id,subject")])
        self.assertIn("$select=id,subject", parts.query)
        self.assertIsNone(request.body)
        self.assertNotIn("Content-Type", request.headers)

    def test_empty_collection_is_left_out_of_query(self):
        args = {"$select": [], "$top": 1}
        request = self.builder.build(descriptor("list-messages"), schema("list-messages"), args)
        self.assertEqual(urlsplit(request.url).query, "$top=1")

    def test_filter_expression_is_encoded(self):
        args = {"$filter": "startswith(subject,'Q3 plan')"}
        request = self.builder.build(descriptor("list-messages"), schema("list-messages"), args)
        query = urlsplit(request.url).query
        self.assertNotIn(" ", query)
        self.assertEqual(dict(parse_qsl(query)), {"$filter": "startswith(subject,'Q3 plan')"})

    def test_missing_required_field_names_it(self):
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(descriptor("send-chat-message"), schema("send-chat-message"), {"chat-id": "19:abc"})
        self.assertEqual(ctx.exception.fields, ["body"])

    def test_missing_path_parameter(self):
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(descriptor("send-chat-message"), schema("send-chat-message"), {"body": {}})
        self.assertIn("chat-id", ctx.exception.fields)

    def test_empty_path_parameter(self):
        args = {"chat-id": "  ", "body": {"body": {}}}
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(descriptor("send-chat-message"), schema("send-chat-message"), args)
        self.assertEqual(ctx.exception.fields, ["chat-id"])

    def test_wrong_primitive_type(self):
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(descriptor("list-messages"), schema("list-messages"), {"$top": "five"})
        self.assertEqual(ctx.exception.fields, ["$top"])

    def test_unknown_field_on_closed_schema(self):
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(descriptor("list-messages"), schema("list-messages"), {"$expand": "attachments"})
        self.assertEqual(ctx.exception.fields, ["$expand"])

    def test_placeholder_not_classified_as_path(self):
        bad = create_descriptor_from_config({
            "toolName": "list-messages",
            "pathPattern": "/users/{user-id}/messages",
            "method": "GET",
        })
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(bad, schema("list-messages"), {})
        self.assertEqual(ctx.exception.fields, ["user-id"])

    def test_dynamic_header_parameter(self):
        request = self.builder.build(
            descriptor("list-messages"), schema("list-messages"), {"timezone": "Europe/Paris"}
        )
        self.assertEqual(request.headers["Prefer"], 'outlook.timezone="Europe/Paris"')
        self.assertEqual(request.headers["ConsistencyLevel"], "eventual")
        self.assertEqual(urlsplit(request.url).query, "")

    def test_dynamic_query_and_body_parameters(self):
        desc = create_descriptor_from_config({
            "toolName": "send-chat-message",
            "pathPattern": "/chats/{chat-id}/messages",
            "method": "POST",
            "dynamicParameters": [
                {"name": "locale", "type": "string", "target": "query", "key": "lang"},
                {"name": "importance", "type": "string", "target": "body"},
            ],
        })
        args = {"chat-id": "c1", "body": {"body": {"content": "hi"}}, "locale": "fr", "importance": "high"}
        request = self.builder.build(desc, schema("send-chat-message"), args)
        self.assertTrue(request.url.endswith("/chats/c1/messages?lang=fr"))
        self.assertEqual(json.loads(request.body), {"body": {"content": "hi"}, "importance": "high"})

    def test_header_argument_cannot_set_authorization(self):
        base = RequestSchema.from_artifact("probe", {
            "method": "get",
            "path": "/probe",
            "parameters": [{"name": "Authorization", "in": "header", "schema": {"type": "string"}}],
        })
        desc = create_descriptor_from_config({"toolName": "probe", "pathPattern": "/probe", "method": "GET"})
        request = self.builder.build(desc, base, {"Authorization": "Bearer stolen"})
        self.assertNotIn("Authorization", request.headers)
        self.assertEqual(request.with_authorization("real")["Authorization"], "Bearer real")

    def test_none_values_are_treated_as_absent(self):
        request = self.builder.build(descriptor("list-messages"), schema("list-messages"), {"$top": None})
        self.assertEqual(request.url, f"{BASE_URL}/me/messages")

    def test_body_rejected_for_get(self):
        base = RequestSchema.from_artifact("probe", {
            "method": "get",
            "path": "/probe",
            "requestBody": {"schema": {"type": "object"}},
        })
        desc = create_descriptor_from_config({"toolName": "probe", "pathPattern": "/probe", "method": "GET"})
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(desc, base, {"body": {"a": 1}})
        self.assertEqual(ctx.exception.fields, ["body"])


if __name__ == '__main__':
    unittest.main()
