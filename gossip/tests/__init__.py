"""Test package for gossip transport unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
