from __future__ import annotations

"""Pydantic request schemas for the public API.

The engine's own envelope validation lives in humanmine.runtime.tx; these
schemas exist only for HTTP input validation and UX stability.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class TxSubmitRequest(BaseModel):
    tx_type: str = Field(..., description="SESSION_OPEN | SESSION_CLOSE | CONFIG_SET | ADMIN_TRANSFER | TREASURY_WITHDRAW")
    signer: str = Field(..., description="Ed25519 public key (hex); also the caller address")
    nonce: int = Field(..., ge=1, description="Signer nonce, last accepted + 1")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(..., description="Ed25519 signature (hex or base64) over the canonical envelope")

    model_config = {"extra": "forbid"}
