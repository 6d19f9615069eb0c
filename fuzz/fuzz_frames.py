"""Fuzz harness for the frame decoder and body codecs.

Arbitrary bytes must only ever surface as ProofStoreError subclasses,
never as unexpected exceptions.
"""
from __future__ import annotations
import atheris
import io
import sys

with atheris.instrument_imports():
    from proofstore_api.errors import ProofStoreError
    from proofstore_api.merkle import MerkleProof
    from proofstore_api.pipeline import decode_text
    from proofstore_api.wire import (
        FrameReader,
        Tag,
        decode_digest,
        decode_error,
        decode_index,
        decode_indices,
    )


_DECODERS = {
    Tag.DATA: decode_text,
    Tag.NEW_VALUE: decode_text,
    Tag.ROOT: decode_digest,
    Tag.LEAF: decode_digest,
    Tag.INDICES: decode_indices,
    Tag.UPDATE_INDEX: decode_index,
    Tag.PROOF: MerkleProof.from_bytes,
    Tag.ERROR: decode_error,
}


def TestOneInput(data: bytes):  # noqa: N802
    reader = FrameReader(io.BytesIO(data), max_frame_bytes=4096)
    for _ in range(16):
        try:
            frame = reader.read_frame()
            _DECODERS[frame.tag](frame.body)
        except ProofStoreError:
            return


def main():
    atheris.Setup(sys.argv, TestOneInput, enable_python_coverage=True)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
