"""
Unit tests for the payload codec.
"""

import pytest

from expserver.codec import CodecError, CodecMiddleware, JSONCodec
from expserver.core.transport import RESPONSE_KIND

from conftest import make_message


class TestJSONCodec:

    def test_encode_is_compact(self):
        assert JSONCodec().encode({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_sort_keys(self):
        assert JSONCodec(sort_keys=True).encode({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_decode(self):
        assert JSONCodec().decode('{"method": "GET"}') == {"method": "GET"}

    def test_decode_bytes(self):
        assert JSONCodec().decode(b"[1, 2]") == [1, 2]

    @pytest.mark.parametrize("payload", [None, ""])
    def test_empty_payload_decodes_to_none(self, payload):
        assert JSONCodec().decode(payload) is None

    def test_decode_error(self):
        with pytest.raises(CodecError) as exc_info:
            JSONCodec().decode("{not json")

        assert exc_info.value.payload == "{not json"
        assert isinstance(exc_info.value, ValueError)

    def test_invalid_utf8_bytes(self):
        with pytest.raises(CodecError) as exc_info:
            JSONCodec().decode(b"\xff\xfe")

        assert exc_info.value.payload == b"\xff\xfe"
        assert "UTF-8" in str(exc_info.value)

    def test_encode_error(self):
        with pytest.raises(CodecError):
            JSONCodec().encode({"when": object()})


class TestCodecMiddleware:

    def test_decodes_request_before_routing(self, server, recorder):
        seen = []
        server.use(CodecMiddleware())
        server.on("/users", "POST", lambda req, res: seen.append(req.body))

        server.dispatch(make_message("/users", '{"method":"POST"}', '{"name":"alice"}'))

        assert seen == [{"name": "alice"}]

    def test_missing_headers_decode_to_empty_mapping(self, server, recorder):
        server.use(CodecMiddleware())
        server.on("/ping", "GET", lambda req, res: res.send("pong"))

        server.dispatch(make_message("/ping", "", None))

        assert recorder.statuses == [400]
        assert recorder.responses == [('{"error":"No method provided"}',)]

    def test_encodes_outgoing_structures(self, server, recorder):
        server.use(CodecMiddleware())
        server.on("/ping", "GET", lambda req, res: res.send({"pong": True}, "plain", 3))

        server.dispatch(make_message("/ping", '{"method":"GET"}', "null"))

        assert recorder.sent[0][2] == (RESPONSE_KIND, "{}", '{"pong":true}', "plain", 3)

    def test_malformed_payload_rejected_with_500(self, server, recorder):
        invoked = []
        server.use(CodecMiddleware())
        server.on("/ping", "GET", lambda req, res: invoked.append(True))

        server.dispatch(make_message("/ping", "{broken", None))

        assert recorder.statuses == [500]
        body = recorder.responses[0][0]
        assert body.startswith('{"error":"Malformed payload')
        assert invoked == []

    def test_invalid_utf8_body_rejected_with_500(self, server, recorder):
        server.use(CodecMiddleware())
        server.on("/x", "POST", lambda req, res: res.send("handled"))

        server.dispatch(make_message("/x", b'{"method":"POST"}', b"\xff\xfe"))

        assert recorder.statuses == [500]
        assert recorder.responses[0][0].startswith('{"error":"Malformed payload: payload is not valid UTF-8')

    def test_structured_values_left_alone(self, server):
        seen = []
        server.use(CodecMiddleware())
        server.on("/ping", "GET", lambda req, res: seen.append((req.headers, req.body)))

        server.dispatch(make_message("/ping", {"method": "GET"}, {"already": "decoded"}))

        assert seen == [({"method": "GET"}, {"already": "decoded"})]

    def test_name(self):
        assert CodecMiddleware().name == "CodecMiddleware(json)"


class TestCodecStage:

    def test_stage_decodes_and_continues(self, server):
        seen = []
        codec = CodecMiddleware()

        server.on("/raw", "POST", codec.stage, lambda req, res: seen.append(req.body))
        # Route and method must resolve before the chain runs, so headers
        # arrive structured here and only the body is raw.
        server.dispatch(make_message("/raw", {"method": "POST"}, "[1,2,3]"))

        assert seen == [[1, 2, 3]]

    def test_stage_rejects_malformed_with_400(self, server, recorder):
        invoked = []
        codec = CodecMiddleware()

        server.on("/raw", "POST", codec.stage, lambda req, res: invoked.append(True))
        server.dispatch(make_message("/raw", {"method": "POST"}, "{broken"))

        assert recorder.statuses == [400]
        assert recorder.responses[0][0]["error"].startswith("Malformed payload")
        assert invoked == []

    def test_stage_rejects_invalid_utf8_with_400(self, server, recorder):
        invoked = []
        codec = CodecMiddleware()

        server.on("/x", "POST", codec.stage, lambda req, res: invoked.append(True))
        server.dispatch(make_message("/x", {"method": "POST"}, b"\xff\xfe"))

        assert recorder.statuses == [400]
        assert recorder.responses[0][0]["error"].startswith("Malformed payload: payload is not valid UTF-8")
        assert invoked == []
