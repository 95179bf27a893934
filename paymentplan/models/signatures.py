"""Off-chain authorization signature payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, validator


class AuthorizationSignatureModel(BaseModel):
    """Signature plus the expiry it was issued with."""

    model_config = ConfigDict(frozen=True)

    expiry_timestamp: int = Field(..., ge=0, description="Unix seconds after which the signature is stale.")
    signature: str = Field(..., min_length=2)

    @validator("signature", pre=True)
    def _normalize_signature(cls, value: Any) -> str:
        """Accept bytes or hex text and keep a 0x-prefixed lowercase hex string."""
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        text = str(value or "").strip().lower()
        if not text.startswith("0x"):
            text = "0x" + text
        return text

    @property
    def signature_bytes(self) -> bytes:
        """Raw signature bytes; raises ValueError on malformed hex."""
        return bytes.fromhex(self.signature[2:])
