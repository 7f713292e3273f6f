"""Terminal chat over a gossip topic."""

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
