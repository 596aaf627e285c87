"""
Wallet Repository.

Handles wallet data access against the Supabase ``wallets`` table.
Every method returns an ``ApiResponse`` / ``PaginatedResponse``; remote
failures are values, never exceptions.

Ownership fields are never trusted from the caller: ``user_id`` is the
session user and ``wallet_id`` always equals ``id``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from dinero.models.common import ApiResponse, PaginatedResponse, PaginationParams
from dinero.models.enums import ErrorCode, MemberRole
from dinero.models.wallet import CreateWalletDTO, UpdateWalletDTO, Wallet, WalletMember
from dinero.repositories.base_repository import BaseRepository, Row
from dinero.utils.general import convert_to_json_safe, new_id


class WalletRepository(BaseRepository):
    """Data access layer for Wallet entities."""

    TABLE = "wallets"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        dto: CreateWalletDTO,
        wallet_id: Optional[str] = None,
    ) -> ApiResponse[Wallet]:
        """Insert a new wallet owned by the session user.

        Parameters
        ----------
        dto:
            Caller-supplied wallet fields.
        wallet_id:
            Client-generated id of an optimistic local wallet, so both
            copies share one id.  A fresh id is generated when omitted.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        now = self._now()
        record_id = wallet_id or new_id()
        wallet = Wallet(
            id=record_id,
            wallet_id=record_id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            balance=0,
            members=[WalletMember(user_id=user_id, role=MemberRole.OWNER, joined_at=now)],
            **dto.model_dump(),
        )

        try:
            response = self._table().insert(self._to_row(wallet)).execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.INSERT_ERROR, "wallet create")

        created = self._parse_rows(Wallet, response.data)
        self._logger.info("Wallet created remotely.", extra={"wallet_id": record_id})
        return ApiResponse.ok(created[0] if created else wallet)

    def update(
        self,
        wallet_id: str,
        dto: Union[UpdateWalletDTO, dict[str, object]],
        updated_at: Optional[datetime] = None,
    ) -> ApiResponse[Wallet]:
        """Apply a partial update.  ``NOT_FOUND`` when no owned row matches.

        *updated_at* carries the local edit time when the sync service
        pushes a dirty wallet; callers editing directly leave it unset.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        changes = dto.changes() if isinstance(dto, UpdateWalletDTO) else dict(dto)
        for protected in ("id", "user_id", "wallet_id", "created_at"):
            changes.pop(protected, None)
        payload: Row = convert_to_json_safe(changes)
        payload["updated_at"] = self._stamp(updated_at)

        try:
            response = (
                self._table()
                .update(payload)
                .eq("id", wallet_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.UPDATE_ERROR, "wallet update")

        updated = self._parse_rows(Wallet, response.data)
        if not updated:
            return ApiResponse.fail(ErrorCode.NOT_FOUND, f"Wallet {wallet_id} not found")
        return ApiResponse.ok(updated[0])

    def upsert(self, wallet: Wallet) -> ApiResponse[Wallet]:
        """Insert-or-update a full wallet keyed by id.

        Used for wallets created offline that never reached the remote.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        row = self._to_row(wallet)
        row["user_id"] = user_id
        row["wallet_id"] = wallet.id

        try:
            response = self._table().upsert(row, on_conflict="id").execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.SYNC_ERROR, "wallet upsert")

        stored = self._parse_rows(Wallet, response.data)
        return ApiResponse.ok(stored[0] if stored else wallet)

    def delete(
        self,
        wallet_id: str,
        deleted_at: Optional[datetime] = None,
    ) -> ApiResponse[None]:
        """Soft-delete the wallet remotely by setting ``deleted_at``."""
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        stamp = self._stamp(deleted_at)
        try:
            (
                self._table()
                .update({"deleted_at": stamp, "updated_at": stamp})
                .eq("id", wallet_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.DELETE_ERROR, "wallet delete")

        self._logger.info("Wallet soft-deleted remotely.", extra={"wallet_id": wallet_id})
        return ApiResponse.ok(None)

    def set_default(self, wallet_id: str) -> ApiResponse[Wallet]:
        """Make *wallet_id* the user's only default wallet."""
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        stamp = self._stamp(None)
        try:
            (
                self._table()
                .update({"is_default": False, "updated_at": stamp})
                .eq("user_id", user_id)
                .execute()
            )
            response = (
                self._table()
                .update({"is_default": True, "updated_at": stamp})
                .eq("id", wallet_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.UPDATE_ERROR, "wallet set_default")

        updated = self._parse_rows(Wallet, response.data)
        if not updated:
            return ApiResponse.fail(ErrorCode.NOT_FOUND, f"Wallet {wallet_id} not found")
        return ApiResponse.ok(updated[0])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, wallet_id: str) -> ApiResponse[Wallet]:
        try:
            response = (
                self._table()
                .select("*")
                .eq("id", wallet_id)
                .is_("deleted_at", "null")
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.FETCH_ERROR, "wallet get_by_id")

        found = self._parse_rows(Wallet, response.data)
        if not found:
            return ApiResponse.fail(ErrorCode.NOT_FOUND, f"Wallet {wallet_id} not found")
        return ApiResponse.ok(found[0])

    def get_all(self, include_deleted: bool = False) -> ApiResponse[list[Wallet]]:
        """All wallets of the session user, oldest first.

        The sync service passes ``include_deleted=True`` so remote
        tombstones reach this device.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        try:
            query = self._table().select("*").eq("user_id", user_id)
            if not include_deleted:
                query = query.is_("deleted_at", "null")
            response = query.order("created_at").execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.FETCH_ERROR, "wallet get_all")

        return ApiResponse.ok(self._parse_rows(Wallet, response.data))

    def get_by_user_id(
        self,
        user_id: str,
        pagination: Optional[PaginationParams] = None,
    ) -> PaginatedResponse[Wallet]:
        """Paginated wallets of *user_id*, default wallet first.

        Failures degrade to an empty page.
        """
        params = pagination or PaginationParams()
        try:
            response = (
                self._table()
                .select("*", count="exact")
                .eq("user_id", user_id)
                .is_("deleted_at", "null")
                .order("is_default", desc=True)
                .order("created_at")
                .range(params.offset, params.offset + params.limit - 1)
                .execute()
            )
        except Exception as exc:
            self._failure(exc, ErrorCode.FETCH_ERROR, "wallet get_by_user_id")
            return PaginatedResponse.empty(params.page)

        total = response.count if response.count is not None else 0
        return PaginatedResponse(
            data=self._parse_rows(Wallet, response.data),
            total=total,
            page=params.page,
            has_more=params.offset + params.limit < total,
        )
