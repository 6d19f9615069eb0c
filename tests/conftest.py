import os
import socket
import sys
import threading
from pathlib import Path

import pytest

# Ensure the 'src' directory is on sys.path for imports in tests
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Keep sessions quiet unless a test asks otherwise
os.environ.setdefault("PROOFSTORE_LOG_LEVEL", "WARNING")

from proofstore_api.errors import ProofStoreError  # noqa: E402
from proofstore_api.server import ServerSession  # noqa: E402
from proofstore_sdk.client import ClientSession  # noqa: E402


class _ServerThread(threading.Thread):
    def __init__(self, session: ServerSession):
        super().__init__(daemon=True)
        self.session = session
        self.error = None

    def run(self):
        try:
            self.session.run()
        except ProofStoreError as e:
            self.error = e


@pytest.fixture
def session_pair():
    """Factory connecting a ClientSession to a server session over a socketpair."""
    opened = []

    def _make(server_cls=ServerSession, client_rng=None, **server_kwargs):
        a, b = socket.socketpair()
        server = server_cls(a.makefile("rb"), a.makefile("wb"), **server_kwargs)
        thread = _ServerThread(server)
        thread.start()
        client = ClientSession(b.makefile("rb"), b.makefile("wb"), rng=client_rng)
        client._sock = b
        opened.append((client, a, thread))
        return client, thread

    yield _make

    for client, a, thread in opened:
        client.close()
        thread.join(timeout=5)
        a.close()
