import asyncio
import time
import unittest

from gossip_net import GossipNode, NodeConfig, TopicId

from chat_cli.chat_model import ChatModel
from chat_cli.session import ChatSession, KeyEvent, SessionConfig, new_key_queue


class ChatEndToEndTests(unittest.IsolatedAsyncioTestCase):
    async def _node(self) -> GossipNode:
        node = GossipNode(NodeConfig(host="127.0.0.1", connect_timeout_s=2.0))
        await node.start()
        self.addAsyncCleanup(node.close)
        return node

    async def _wait_until(self, predicate, timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                self.fail("condition not reached")
            await asyncio.sleep(0.02)

    def _start(self, model: ChatModel, sender, receiver):
        keys = new_key_queue()
        session = ChatSession(model, sender, receiver, keys, config=SessionConfig(heartbeat_interval_s=0.2))
        task = asyncio.create_task(session.run())
        return keys, task

    async def test_message_typed_on_one_node_appears_once_on_the_other(self):
        topic = TopicId.random()
        a_node = await self._node()
        b_node = await self._node()

        alice = ChatModel(a_node.node_id, "alice")
        a_keys, a_task = self._start(alice, *await a_node.subscribe_and_join(topic))
        bob = ChatModel(b_node.node_id, "bob")
        b_keys, b_task = self._start(bob, *await b_node.subscribe_and_join(topic, [a_node.node_addr()]))

        await self._wait_until(lambda: ("System", "alice joined") in bob.messages)
        await self._wait_until(lambda: ("System", "bob joined") in alice.messages)

        for char in "hello":
            await a_keys.put(KeyEvent("CHAR", char))
        await a_keys.put(KeyEvent("ENTER"))
        await self._wait_until(lambda: ("alice", "hello") in bob.messages)

        # Let a few heartbeats pass; none of them may add log entries.
        await asyncio.sleep(0.5)
        self.assertEqual(bob.messages.count(("alice", "hello")), 1)
        self.assertEqual(bob.messages.count(("System", "alice joined")), 1)
        self.assertEqual(alice.messages, [("System", "bob joined"), ("alice", "hello")])

        await a_keys.put(KeyEvent("ESC"))
        await b_keys.put(KeyEvent("ESC"))
        await asyncio.wait_for(asyncio.gather(a_task, b_task), timeout=2)


if __name__ == "__main__":
    unittest.main()
