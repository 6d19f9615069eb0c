from __future__ import annotations
import logging
import socketserver
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .crypto import hash_item, to_hex
from .errors import (
    ConnectionClosed,
    IndexOutOfRange,
    ParseError,
    ProofStoreError,
    ProtocolError,
)
from .merkle import MerkleProof, MerkleTree
from .models import IndicesRequest
from .pipeline import decode_text, single_item, split_items
from .settings import settings
from .wire import Frame, FrameReader, FrameWriter, Tag, decode_index, decode_indices

logger = logging.getLogger(__name__)


class ServerSession:
    """Server side of one connection. Owns its tree; shares nothing.

    The handle_* methods implement each exchange without touching the
    stream, so they can be driven directly; run() binds them to frames.
    """

    def __init__(
        self,
        rfile: BinaryIO,
        wfile: BinaryIO,
        max_frame_bytes: Optional[int] = None,
    ):
        self.reader = FrameReader(rfile, max_frame_bytes)
        self.writer = FrameWriter(wfile)
        self.items: List[str] = []
        self.tree: Optional[MerkleTree] = None
        self.pending_update: Optional[int] = None
        self._handlers: Dict[Tag, Callable[[Frame], None]] = {
            Tag.DATA: self._on_data,
            Tag.INDICES: self._on_indices,
            Tag.UPDATE_INDEX: self._on_update_index,
            Tag.NEW_VALUE: self._on_new_value,
        }

    # ---- protocol logic ----------------------------------------------

    def _require_tree(self) -> MerkleTree:
        if self.tree is None:
            raise ProtocolError("no data committed in this session")
        return self.tree

    def handle_data(self, text: str) -> bytes:
        items = split_items(text)
        self.items = items
        self.tree = MerkleTree.from_items(items)
        self.pending_update = None
        logger.info("committed %d items, root %s", len(items), to_hex(self.tree.root))
        return self.tree.root

    def leaves_for(self, indices: List[int]) -> List[bytes]:
        """Leaf digests returned alongside a proof, in request order."""
        tree = self._require_tree()
        return [tree.leaves[i] for i in indices]

    def handle_indices(self, indices: List[int]) -> Tuple[List[bytes], MerkleProof]:
        tree = self._require_tree()
        try:
            req = IndicesRequest(indices=indices)
        except ValidationError as e:
            raise ParseError(f"invalid indices request: {e.errors()[0]['msg']}") from e
        proof = tree.proof(req.indices)
        return self.leaves_for(req.indices), proof

    def handle_update_index(self, index: int) -> Tuple[MerkleProof, bytes]:
        tree = self._require_tree()
        proof = tree.proof([index])
        self.pending_update = index
        return proof, self.leaves_for([index])[0]

    def handle_new_value(self, text: str) -> bytes:
        tree = self._require_tree()
        if self.pending_update is None:
            raise ProtocolError("new value sent without a preceding update request")
        index = self.pending_update
        value = single_item(text)
        self.items[index] = value
        self.tree = tree.with_leaf(index, hash_item(value))
        self.pending_update = None
        logger.info("updated item %d, new root %s", index, to_hex(self.tree.root))
        return self.tree.root

    # ---- frame binding -----------------------------------------------

    def _on_data(self, frame: Frame) -> None:
        root = self.handle_data(decode_text(frame.body))
        self.writer.write_frame(Tag.ROOT, root)

    def _on_indices(self, frame: Frame) -> None:
        leaves, proof = self.handle_indices(decode_indices(frame.body))
        for leaf in leaves:
            self.writer.write_frame(Tag.LEAF, leaf)
        self.writer.write_frame(Tag.PROOF, proof.to_bytes())

    def _on_update_index(self, frame: Frame) -> None:
        proof, leaf = self.handle_update_index(decode_index(frame.body))
        self.writer.write_frame(Tag.PROOF, proof.to_bytes())
        self.writer.write_frame(Tag.LEAF, leaf)

    def _on_new_value(self, frame: Frame) -> None:
        root = self.handle_new_value(decode_text(frame.body))
        self.writer.write_frame(Tag.ROOT, root)

    def _report(self, err: ProofStoreError) -> None:
        if isinstance(err, IndexOutOfRange):
            message = f"{err.index} {err.leaf_count}: {err}"
        else:
            message = str(err)
        self.writer.write_error(err.code, message)

    def run(self) -> None:
        """Serve frames until the peer disconnects.

        IndexOutOfRange is reported and the session continues; any other
        ProofStoreError is reported (best effort) and re-raised.
        """
        while True:
            try:
                frame = self.reader.read_frame()
            except ConnectionClosed:
                logger.debug("peer closed the session")
                return
            except ProofStoreError as e:
                self._try_report(e)
                raise
            handler = self._handlers.get(frame.tag)
            try:
                if handler is None:
                    raise ProtocolError(f"unexpected {frame.tag.name} frame from client")
                handler(frame)
            except IndexOutOfRange as e:
                logger.info("rejected request: %s", e)
                self._report(e)
            except ConnectionClosed:
                raise
            except ProofStoreError as e:
                self._try_report(e)
                raise

    def _try_report(self, err: ProofStoreError) -> None:
        try:
            self._report(err)
        except ConnectionClosed:
            logger.debug("could not report %s, peer is gone", type(err).__name__)


class _SessionHandler(socketserver.StreamRequestHandler):
    def setup(self) -> None:
        self.timeout = settings.io_timeout
        super().setup()

    def handle(self) -> None:
        logger.info("new connection: %s", self.client_address)
        session = self.server.session_factory(self.rfile, self.wfile)  # type: ignore[attr-defined]
        try:
            session.run()
        except ProofStoreError as e:
            logger.warning("session %s ended: %s", self.client_address, e)


class ThreadingProofServer(socketserver.ThreadingTCPServer):
    """One thread and one independent ServerSession per connection."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        session_factory: Callable[[BinaryIO, BinaryIO], ServerSession] = ServerSession,
    ):
        self.session_factory = session_factory
        super().__init__(server_address, _SessionHandler)


def serve(host: Optional[str] = None, port: Optional[int] = None) -> None:
    address = (host or settings.host, port if port is not None else settings.port)
    with ThreadingProofServer(address) as srv:
        logger.info("server listening on %s:%d", *srv.server_address[:2])
        srv.serve_forever()
