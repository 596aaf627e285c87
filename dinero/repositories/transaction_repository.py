"""
Transaction Repository.

Handles transaction data access against the Supabase ``transactions``
table, including the two sync primitives used by the sync service:
bulk upsert of dirty records (:meth:`sync_to_remote`) and the
incremental pull (:meth:`fetch_from_remote`).

Ownership is enforced here, not trusted from the payload: ``user_id``
is overwritten with the session user, and a record may only target a
wallet the session user owns.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Optional, Union

from dinero.auth import SessionManager
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger
from dinero.models.common import ApiResponse, PaginatedResponse, PaginationParams
from dinero.models.enums import ErrorCode
from dinero.models.transaction import (
    CreateTransactionDTO,
    Transaction,
    TransactionFilters,
    TransactionSummary,
    UpdateTransactionDTO,
)
from dinero.repositories.base_repository import BaseRepository, Row
from dinero.services.summary import summarize_transactions
from dinero.utils.general import convert_to_json_safe, new_id, to_iso
from dinero.utils.string_helpers import sanitize_postgrest_value

_WALLETS_TABLE = "wallets"


class TransactionRepository(BaseRepository):
    """Data access layer for Transaction entities.

    Transactions are never hard-deleted: :meth:`delete` sets
    ``deleted_at`` so the tombstone propagates to other devices.

    Parameters
    ----------
    page_size:
        Default page size for :meth:`get_all`.
    summary_limit:
        Maximum number of rows :meth:`get_summary` aggregates.
    """

    TABLE = "transactions"

    def __init__(
        self,
        db: DatabaseManager,
        session: SessionManager,
        logger: StructuredLogger,
        page_size: int = 50,
        summary_limit: int = 1000,
    ) -> None:
        super().__init__(db, session, logger)
        self._page_size = page_size
        self._summary_limit = summary_limit

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def _owned_wallet_ids(self, user_id: str, wallet_ids: Iterable[str]) -> set[str]:
        """Subset of *wallet_ids* owned by *user_id*.  Raises on remote failure."""
        candidates = sorted({w for w in wallet_ids if w})
        if not candidates:
            return set()
        response = (
            self.supabase.table(_WALLETS_TABLE)
            .select("id")
            .eq("user_id", user_id)
            .in_("id", candidates)
            .execute()
        )
        return {row["id"] for row in response.data or []}

    def _owned_row(self, transaction: Transaction, user_id: str) -> Row:
        row = self._to_row(transaction)
        row["user_id"] = user_id
        return row

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        dto: CreateTransactionDTO,
        transaction_id: Optional[str] = None,
    ) -> ApiResponse[Transaction]:
        """Insert a transaction into one of the session user's wallets.

        Returns ``FORBIDDEN`` when ``dto.wallet_id`` is not owned by the
        session user.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        now = self._now()
        transaction = Transaction(
            id=transaction_id or new_id(),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **dto.model_dump(),
        )

        try:
            if dto.wallet_id not in self._owned_wallet_ids(user_id, [dto.wallet_id]):
                self._logger.warning(
                    "Rejected transaction for a wallet the user does not own.",
                    extra={"wallet_id": dto.wallet_id, "user_id": user_id},
                )
                return ApiResponse.fail(
                    ErrorCode.FORBIDDEN,
                    f"Wallet {dto.wallet_id} does not belong to the current user",
                )
            response = self._table().insert(self._owned_row(transaction, user_id)).execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.INSERT_ERROR, "transaction create")

        created = self._parse_rows(Transaction, response.data)
        return ApiResponse.ok(created[0] if created else transaction)

    def update(
        self,
        transaction_id: str,
        dto: Union[UpdateTransactionDTO, dict[str, object]],
        updated_at: Optional[datetime] = None,
    ) -> ApiResponse[Transaction]:
        """Apply a partial update.  ``NOT_FOUND`` when no owned row matches."""
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        changes = dto.changes() if isinstance(dto, UpdateTransactionDTO) else dict(dto)
        for protected in ("id", "user_id", "wallet_id", "created_at"):
            changes.pop(protected, None)
        payload: Row = convert_to_json_safe(changes)
        payload["updated_at"] = self._stamp(updated_at)

        try:
            response = (
                self._table()
                .update(payload)
                .eq("id", transaction_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.UPDATE_ERROR, "transaction update")

        updated = self._parse_rows(Transaction, response.data)
        if not updated:
            return ApiResponse.fail(
                ErrorCode.NOT_FOUND, f"Transaction {transaction_id} not found",
            )
        return ApiResponse.ok(updated[0])

    def delete(
        self,
        transaction_id: str,
        deleted_at: Optional[datetime] = None,
    ) -> ApiResponse[None]:
        """Soft-delete remotely by setting ``deleted_at``."""
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()

        stamp = self._stamp(deleted_at)
        try:
            (
                self._table()
                .update({"deleted_at": stamp, "updated_at": stamp})
                .eq("id", transaction_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.DELETE_ERROR, "transaction delete")
        return ApiResponse.ok(None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, transaction_id: str) -> ApiResponse[Transaction]:
        try:
            response = (
                self._table()
                .select("*")
                .eq("id", transaction_id)
                .is_("deleted_at", "null")
                .execute()
            )
        except Exception as exc:
            return self._failure(exc, ErrorCode.FETCH_ERROR, "transaction get_by_id")

        found = self._parse_rows(Transaction, response.data)
        if not found:
            return ApiResponse.fail(
                ErrorCode.NOT_FOUND, f"Transaction {transaction_id} not found",
            )
        return ApiResponse.ok(found[0])

    def _query_page(
        self,
        filters: TransactionFilters,
        params: PaginationParams,
    ) -> PaginatedResponse[Transaction]:
        """Run the filtered, paginated select.  Raises on remote failure."""
        query = self._table().select("*", count="exact")

        if filters.wallet_id:
            query = query.eq("wallet_id", filters.wallet_id)
        if not filters.include_deleted:
            query = query.is_("deleted_at", "null")
        if filters.type:
            query = query.eq("type", str(filters.type))
        if filters.status:
            query = query.eq("status", str(filters.status))
        if filters.category_id:
            query = query.eq("category_id", filters.category_id)
        if filters.start_date:
            query = query.gte("date", to_iso(filters.start_date))
        if filters.end_date:
            query = query.lte("date", to_iso(filters.end_date))
        if filters.min_amount is not None:
            query = query.gte("amount", str(filters.min_amount))
        if filters.max_amount is not None:
            query = query.lte("amount", str(filters.max_amount))
        if filters.tags:
            query = query.contains("tags", filters.tags)
        if filters.search_query:
            safe_search = sanitize_postgrest_value(filters.search_query)
            query = query.ilike("description", f"%{safe_search}%")

        response = (
            query.order("date", desc=True)
            .range(params.offset, params.offset + params.limit - 1)
            .execute()
        )
        total = response.count if response.count is not None else 0
        return PaginatedResponse(
            data=self._parse_rows(Transaction, response.data),
            total=total,
            page=params.page,
            has_more=params.offset + params.limit < total,
        )

    def get_all(
        self,
        filters: Optional[TransactionFilters] = None,
        pagination: Optional[PaginationParams] = None,
    ) -> PaginatedResponse[Transaction]:
        """Filtered transactions, newest ``date`` first.

        Failures degrade to an empty page.
        """
        params = pagination or PaginationParams(limit=self._page_size)
        try:
            return self._query_page(filters or TransactionFilters(), params)
        except Exception as exc:
            self._failure(exc, ErrorCode.FETCH_ERROR, "transaction get_all")
            return PaginatedResponse.empty(params.page)

    def get_summary(
        self,
        wallet_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ApiResponse[TransactionSummary]:
        """Income/expense totals, per-category and per-day breakdown."""
        filters = TransactionFilters(
            wallet_id=wallet_id, start_date=start_date, end_date=end_date,
        )
        try:
            page = self._query_page(filters, PaginationParams(page=1, limit=self._summary_limit))
        except Exception as exc:
            return self._failure(exc, ErrorCode.SUMMARY_ERROR, "transaction get_summary")

        if page.total > len(page.data):
            self._logger.warning(
                "Summary truncated to %d of %d transactions.",
                len(page.data),
                page.total,
                extra={"wallet_id": wallet_id},
            )
        return ApiResponse.ok(summarize_transactions(page.data))

    # ------------------------------------------------------------------
    # Sync primitives
    # ------------------------------------------------------------------

    def sync_to_remote(
        self,
        transactions: list[Transaction],
    ) -> ApiResponse[list[Transaction]]:
        """Bulk upsert dirty local records keyed by ``id``.

        ``user_id`` is overwritten with the session user.  Records that
        target a wallet the user does not own are dropped from the batch
        and absent from the returned acknowledgement list.
        """
        user_id = self._require_user()
        if user_id is None:
            return self._unauthorized()
        if not transactions:
            return ApiResponse.ok([])

        try:
            owned = self._owned_wallet_ids(user_id, (t.wallet_id for t in transactions))
            accepted = [t for t in transactions if t.wallet_id in owned]
            dropped = len(transactions) - len(accepted)
            if dropped:
                self._logger.warning(
                    "Dropped %d transaction(s) targeting wallets not owned by the user.",
                    dropped,
                    extra={"user_id": user_id},
                )
            if not accepted:
                return ApiResponse.ok([])

            rows = [self._owned_row(t, user_id) for t in accepted]
            response = self._table().upsert(rows, on_conflict="id").execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.SYNC_ERROR, "transaction sync_to_remote")

        stored = self._parse_rows(Transaction, response.data)
        self._logger.info(
            "Pushed transactions.",
            extra={"sent": len(rows), "acknowledged": len(stored)},
        )
        return ApiResponse.ok(stored)

    def fetch_from_remote(
        self,
        last_sync_at: Optional[str],
        wallet_id: Optional[str] = None,
    ) -> ApiResponse[list[Transaction]]:
        """Every record (tombstones included) with ``updated_at > last_sync_at``.

        Ordered by ``updated_at`` ascending so the caller may advance its
        watermark to the last item.  ``None`` fetches the full history.
        """
        try:
            query = self._table().select("*")
            if wallet_id:
                query = query.eq("wallet_id", wallet_id)
            if last_sync_at:
                query = query.gt("updated_at", last_sync_at)
            response = query.order("updated_at").execute()
        except Exception as exc:
            return self._failure(exc, ErrorCode.FETCH_ERROR, "transaction fetch_from_remote")

        return ApiResponse.ok(self._parse_rows(Transaction, response.data))
