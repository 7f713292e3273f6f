import json
import unittest

from gossip_net import NodeId

from chat_cli import protocol
from chat_cli.protocol import AboutMe, CorruptMessage, Message, ProtocolError, ProtocolMessage, WhoIsThere


class ProtocolTests(unittest.TestCase):
    def setUp(self) -> None:
        self.node_id = NodeId.random()

    def test_each_variant_roundtrips(self):
        bodies = [
            WhoIsThere(from_=self.node_id),
            AboutMe(from_=self.node_id, name="alice"),
            Message(from_=self.node_id, text="hello, wörld"),
        ]
        for body in bodies:
            with self.subTest(body=body):
                decoded = protocol.decode(protocol.encode(body))
                self.assertEqual(decoded.body, body)
                self.assertEqual(len(decoded.nonce), protocol.NONCE_LENGTH)

    def test_same_body_encodes_differently_each_time(self):
        body = AboutMe(from_=self.node_id, name="alice")
        first, second = protocol.encode(body), protocol.encode(body)
        self.assertNotEqual(first, second)
        self.assertEqual(protocol.decode(first).body, protocol.decode(second).body)

    def test_wire_shape_is_tagged(self):
        payload = json.loads(protocol.encode(Message(from_=self.node_id, text="hi")))
        self.assertEqual(set(payload), {"body", "nonce"})
        self.assertEqual(payload["body"], {"Message": {"from": str(self.node_id), "text": "hi"}})
        self.assertEqual(len(payload["nonce"]), 16)

    def test_to_bytes_keeps_given_nonce(self):
        message = ProtocolMessage(body=WhoIsThere(from_=self.node_id), nonce=bytes(16))
        self.assertEqual(protocol.decode(protocol.to_bytes(message)), message)

    def test_corrupt_payloads_raise(self):
        good = json.loads(protocol.encode(AboutMe(from_=self.node_id, name="alice")))
        nonce = good["nonce"]
        sender = str(self.node_id)
        payloads = [
            b"",
            b"\x80\x81",
            b"[]",
            protocol.encode(WhoIsThere(from_=self.node_id))[:-3],
            json.dumps({"body": {"Unknown": {"from": sender}}, "nonce": nonce}).encode(),
            json.dumps({"body": {}, "nonce": nonce}).encode(),
            json.dumps({"body": {"WhoIsThere": {"from": sender}, "AboutMe": {}}, "nonce": nonce}).encode(),
            json.dumps({"body": {"AboutMe": {"from": sender}}, "nonce": nonce}).encode(),
            json.dumps({"body": {"AboutMe": {"from": sender, "name": 7}}, "nonce": nonce}).encode(),
            json.dumps({"body": {"Message": {"from": "nope", "text": "x"}}, "nonce": nonce}).encode(),
            json.dumps({"body": {"WhoIsThere": {"from": sender}}}).encode(),
            json.dumps({"body": {"WhoIsThere": {"from": sender}}, "nonce": nonce[:15]}).encode(),
            json.dumps({"body": {"WhoIsThere": {"from": sender}}, "nonce": [256] * 16}).encode(),
            json.dumps({"body": {"WhoIsThere": {"from": sender}}, "nonce": [True] * 16}).encode(),
        ]
        for payload in payloads:
            with self.subTest(payload=payload[:60]):
                with self.assertRaises(CorruptMessage):
                    protocol.decode(payload)

    def test_deeply_nested_payload_is_corrupt(self):
        for payload in (b"[" * 100_000, b"{\"body\":" * 50_000):
            with self.subTest(size=len(payload)):
                with self.assertRaises(CorruptMessage):
                    protocol.decode(payload)

    def test_corrupt_message_is_a_protocol_error(self):
        self.assertTrue(issubclass(CorruptMessage, ProtocolError))

    def test_encode_rejects_unknown_body(self):
        with self.assertRaises(TypeError):
            protocol.encode("not a body")  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
