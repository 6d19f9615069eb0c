from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic import ConfigDict


class IndicesRequest(BaseModel):
    """Leaf positions a client asks the server to prove.

    Strict: indices must be real ints (no "2" → 2 coercion), non-negative
    and free of duplicates, so the request maps one-to-one onto LEAF frames.
    """

    model_config = ConfigDict(strict=True)

    indices: List[int] = Field(min_length=1)

    @field_validator("indices")
    @classmethod
    def _valid_positions(cls, v: List[int]) -> List[int]:
        for i in v:
            if i < 0:
                raise ValueError("indices must be non-negative")
            if i >= 2**64:
                raise ValueError("indices must fit in u64")
        if len(set(v)) != len(v):
            raise ValueError("indices must be unique")
        return v


class TreeHead(BaseModel):
    tree_size: int
    merkle_root_hex: str


class SessionReport(BaseModel):
    """Outcome of a client session, suitable for printing or JSON export."""

    state: str
    leaf_count: int
    root_hex: Optional[str] = None
    audited_indices: List[int] = Field(default_factory=list)
    audit_verified: Optional[bool] = None
    update_index: Optional[int] = None
    old_proof_verified: Optional[bool] = None
    new_root_hex: Optional[str] = None
    computed_root_hex: Optional[str] = None
    roots_match: Optional[bool] = None
    error: Optional[str] = None
