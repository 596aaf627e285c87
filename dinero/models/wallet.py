"""
Wallet Model.

A wallet is the partition root for transactions: its ``wallet_id``
always equals its own ``id``.  ``balance`` is a cached figure, never the
source of truth.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from dinero.models.common import SyncableEntity
from dinero.models.enums import MemberRole, WalletType
from dinero.utils.string_helpers import normalize_keys


class WalletMember(BaseModel):
    """A user's membership in a wallet."""

    user_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: object) -> object:
        if isinstance(data, dict):
            return normalize_keys(data)
        return data


class Wallet(SyncableEntity):
    """Represents a wallet record, local or remote."""

    name: str
    type: WalletType = WalletType.PERSONAL
    currency: str = "BRL"
    icon: Optional[str] = None
    color: Optional[str] = None
    balance: Decimal = Decimal("0")
    is_default: bool = False
    members: list[WalletMember] = Field(default_factory=list)

    @model_validator(mode="after")
    def _self_partition(self) -> "Wallet":
        if not self.wallet_id:
            self.wallet_id = self.id
        elif self.wallet_id != self.id:
            raise ValueError(
                f"Wallet {self.id} must be its own partition root, "
                f"got wallet_id={self.wallet_id}"
            )
        return self


class CreateWalletDTO(BaseModel):
    """Fields a caller supplies to create a wallet."""

    name: str = Field(min_length=1)
    type: WalletType = WalletType.PERSONAL
    currency: str = "BRL"
    icon: Optional[str] = None
    color: Optional[str] = None
    is_default: bool = False


class UpdateWalletDTO(BaseModel):
    """Partial wallet update.  Only fields explicitly set are applied."""

    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[WalletType] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    is_default: Optional[bool] = None

    def changes(self) -> dict[str, object]:
        """Return the explicitly-set fields as a plain dict."""
        return self.model_dump(exclude_unset=True)


class WalletState(BaseModel):
    """Reactive state projected by ``WalletContext``."""

    wallets: list[Wallet] = Field(default_factory=list)
    current_wallet_id: Optional[str] = None
    is_loading: bool = True
    error: Optional[str] = None
