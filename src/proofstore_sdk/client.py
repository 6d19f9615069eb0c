from __future__ import annotations
import logging
import random
import socket
from contextlib import contextmanager
from enum import Enum
from typing import BinaryIO, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from proofstore_api.crypto import to_hex
from proofstore_api.errors import (
    IndexOutOfRange,
    ParseError,
    ProofStoreError,
    ProofVerificationFailure,
    ProtocolError,
    RootMismatchFailure,
)
from proofstore_api.merkle import MerkleProof, derive_path
from proofstore_api.models import IndicesRequest, SessionReport
from proofstore_api.pipeline import single_item, split_items
from proofstore_api.settings import settings
from proofstore_api.wire import FrameReader, FrameWriter, Tag

from .verify import recompute_root, roots_match, verify_leaves

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    INIT = "init"
    AWAIT_ROOT = "await_root"
    AWAIT_INITIAL_PROOF = "await_initial_proof"
    VERIFIED = "verified"
    REQUEST_UPDATE_PROOF = "request_update_proof"
    AWAIT_OLD_PROOF = "await_old_proof"
    OLD_PROOF_VERIFIED = "old_proof_verified"
    SEND_NEW_VALUE = "send_new_value"
    AWAIT_NEW_ROOT = "await_new_root"
    RECOMPUTE_ROOT = "recompute_root"
    DONE = "done"
    ABORTED = "aborted"


def choose_adjacent_indices(n: int, rng: Optional[random.Random] = None) -> List[int]:
    """Pick a random adjacent pair [k, k+1] of leaf positions ([0] if n == 1)."""
    if n < 1:
        raise ValueError("n must be positive")
    if n == 1:
        return [0]
    rng = rng or random.Random()
    first = rng.randrange(n - 1)
    return [first, first + 1]


def _indices_request(indices: Sequence[int]) -> IndicesRequest:
    try:
        return IndicesRequest(indices=list(indices))
    except ValidationError as e:
        raise ParseError(f"invalid indices: {e.errors()[0]['msg']}") from e


class ClientSession:
    """Client side of the protocol, one instance per connection.

    Every verification failure moves the session to ABORTED and raises; an
    aborted session refuses all further calls. IndexOutOfRange reported by
    the server leaves the state as it was so the caller may retry.
    """

    def __init__(
        self,
        rfile: BinaryIO,
        wfile: BinaryIO,
        rng: Optional[random.Random] = None,
        max_frame_bytes: Optional[int] = None,
    ):
        self.reader = FrameReader(rfile, max_frame_bytes)
        self.writer = FrameWriter(wfile)
        self.rng = rng or random.Random()
        self.state = SessionState.INIT
        self.leaf_count = 0
        self.root: Optional[bytes] = None
        self.audited_indices: List[int] = []
        self.audit_verified: Optional[bool] = None
        self.old_proof_verified: Optional[bool] = None
        self.update_index: Optional[int] = None
        self.stored_proof: Optional[MerkleProof] = None
        self.declared_new_root: Optional[bytes] = None
        self.computed_root: Optional[bytes] = None
        self._sock: Optional[socket.socket] = None

    # ---- state bookkeeping -------------------------------------------

    def _require(self, *states: SessionState) -> None:
        if self.state is SessionState.ABORTED:
            raise ProtocolError("session was aborted; no further requests allowed")
        if self.state not in states:
            raise ProtocolError(f"operation not allowed in state {self.state.value}")

    def _abort(self, reason: str) -> None:
        logger.warning("aborting session: %s", reason)
        self.state = SessionState.ABORTED

    @contextmanager
    def _step(self) -> Iterator[None]:
        prev = self.state
        try:
            yield
        except IndexOutOfRange:
            self.state = prev
            raise
        except ProofStoreError as e:
            if self.state is not SessionState.ABORTED:
                self._abort(f"{type(e).__name__}: {e}")
            raise

    # ---- protocol steps ----------------------------------------------

    def submit(self, text: str) -> bytes:
        """Send the data set and return the root the server committed to."""
        self._require(SessionState.INIT)
        items = split_items(text)
        with self._step():
            self.state = SessionState.AWAIT_ROOT
            self.writer.write_text(Tag.DATA, text)
            self.root = self.reader.read_digest(Tag.ROOT)
            self.leaf_count = len(items)
            self.state = SessionState.AWAIT_INITIAL_PROOF
        logger.info("server committed %d items, root %s", self.leaf_count, to_hex(self.root))
        return self.root

    def audit(self, indices: Optional[Sequence[int]] = None) -> List[bytes]:
        """Request and verify a proof for `indices` (a random adjacent pair by default)."""
        self._require(SessionState.AWAIT_INITIAL_PROOF, SessionState.VERIFIED)
        if indices is None:
            indices = choose_adjacent_indices(self.leaf_count, self.rng)
        req = _indices_request(indices)
        with self._step():
            self.writer.write_indices(Tag.INDICES, req.indices)
            leaves = [self.reader.read_digest(Tag.LEAF) for _ in req.indices]
            proof = MerkleProof.from_bytes(self.reader.expect(Tag.PROOF).body)
            self.audited_indices = list(req.indices)
            self.audit_verified = verify_leaves(
                self.root, req.indices, leaves, self.leaf_count, proof
            )
            if not self.audit_verified:
                self._abort(f"audit proof for {req.indices} rejected")
                raise ProofVerificationFailure(
                    f"proof for indices {req.indices} does not match the committed root",
                    root=self.root,
                )
            self.state = SessionState.VERIFIED
        logger.info("audit of indices %s verified", req.indices)
        return leaves

    def request_update_proof(self, index: int) -> bytes:
        """Fetch and verify the current proof for `index`; keep it for the update."""
        self._require(SessionState.VERIFIED)
        (index,) = _indices_request([index]).indices
        with self._step():
            self.state = SessionState.REQUEST_UPDATE_PROOF
            self.writer.write_indices(Tag.UPDATE_INDEX, [index])
            self.state = SessionState.AWAIT_OLD_PROOF
            proof = MerkleProof.from_bytes(self.reader.expect(Tag.PROOF).body)
            leaf = self.reader.read_digest(Tag.LEAF)
            # only an index the server answered for is recorded
            self.update_index = index
            self.old_proof_verified = verify_leaves(
                self.root, [index], [leaf], self.leaf_count, proof
            )
            if not self.old_proof_verified:
                self._abort(f"old-leaf proof for index {index} rejected")
                raise ProofVerificationFailure(
                    f"proof for index {index} does not match the committed root",
                    root=self.root,
                )
            self.stored_proof = proof
            self.state = SessionState.OLD_PROOF_VERIFIED
        return leaf

    def send_new_value(self, value: str) -> bytes:
        """Send the replacement and accept the server's new root only if it
        equals the root recomputed from the stored proof."""
        self._require(SessionState.OLD_PROOF_VERIFIED)
        value = single_item(value)
        with self._step():
            self.state = SessionState.SEND_NEW_VALUE
            self.writer.write_text(Tag.NEW_VALUE, value)
            self.state = SessionState.AWAIT_NEW_ROOT
            declared = self.reader.read_digest(Tag.ROOT)
            self.declared_new_root = declared
            self.state = SessionState.RECOMPUTE_ROOT
            path = derive_path(self.leaf_count, self.update_index)
            computed = recompute_root(value, self.stored_proof.proof_hashes(), path)
            self.computed_root = computed
            if not roots_match(declared, computed):
                self._abort("declared new root differs from recomputed root")
                raise RootMismatchFailure(
                    "server's new root does not match the locally recomputed root",
                    declared_root=declared,
                    computed_root=computed,
                )
            self.root = declared
            self.state = SessionState.DONE
        logger.info("update of index %d committed, root %s", self.update_index, to_hex(declared))
        return declared

    def run(
        self,
        text: str,
        update_index: int,
        new_value: str,
        indices: Optional[Sequence[int]] = None,
    ) -> SessionReport:
        """Full flow: submit, audit, update. Failures end up in the report."""
        error = None
        try:
            self.submit(text)
            self.audit(indices)
            self.request_update_proof(update_index)
            self.send_new_value(new_value)
        except ProofStoreError as e:
            error = f"{type(e).__name__}: {e}"
        return self.report(error)

    def report(self, error: Optional[str] = None) -> SessionReport:
        return SessionReport(
            state=self.state.value,
            leaf_count=self.leaf_count,
            root_hex=to_hex(self.root) if self.root else None,
            audited_indices=self.audited_indices,
            audit_verified=self.audit_verified,
            update_index=self.update_index,
            old_proof_verified=self.old_proof_verified,
            new_root_hex=to_hex(self.declared_new_root) if self.declared_new_root else None,
            computed_root_hex=to_hex(self.computed_root) if self.computed_root else None,
            roots_match=(
                self.state is SessionState.DONE if self.computed_root is not None else None
            ),
            error=error,
        )

    # ---- transport -----------------------------------------------------

    def close(self) -> None:
        for f in (self.reader.stream, self.writer.stream):
            try:
                f.close()
            except OSError:
                pass
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> "ClientSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def connect(
    host: Optional[str] = None,
    port: Optional[int] = None,
    timeout: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> ClientSession:
    address = (host or settings.host, port if port is not None else settings.port)
    sock = socket.create_connection(
        address, timeout=timeout if timeout is not None else settings.io_timeout
    )
    session = ClientSession(sock.makefile("rb"), sock.makefile("wb"), rng=rng)
    session._sock = sock
    logger.info("connected to %s:%d", *address)
    return session
