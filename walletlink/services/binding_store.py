"""Binding persistence with strict 1:1 wallet <-> Telegram uniqueness.

Uniqueness is enforced by the table constraints; every write here resolves
conflicts inside a single statement or transaction, so concurrent workers in
separate processes cannot leave duplicate or half-replaced bindings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from walletlink.core.addresses import normalize_wallet_address
from walletlink.core.time_provider import default_time_provider
from walletlink.errors import StoreError
from walletlink.models import WalletTelegramBinding


logger = logging.getLogger(__name__)

# A concurrent writer can win between our DELETE and INSERT on databases without
# multi-constraint REPLACE; each retry runs in a fresh transaction.
REPLACE_ATTEMPTS = 3


class BindingStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @property
    def dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def lookup_by_wallet(self, wallet_address: str) -> WalletTelegramBinding | None:
        wallet = normalize_wallet_address(wallet_address)
        return self._first(select(WalletTelegramBinding).where(WalletTelegramBinding.wallet_address == wallet))

    def lookup_by_telegram_id(self, telegram_id: int) -> WalletTelegramBinding | None:
        return self._first(select(WalletTelegramBinding).where(WalletTelegramBinding.telegram_user_id == int(telegram_id)))

    def upsert(self, wallet_address: str, telegram_id: int) -> WalletTelegramBinding:
        """Insert the pair unless it already exists. Idempotent for the same pair."""
        wallet = normalize_wallet_address(wallet_address)
        values = self._row_values(wallet, telegram_id)
        if self.dialect == "sqlite":
            stmt = sqlite_insert(WalletTelegramBinding).values(**values).on_conflict_do_nothing(
                index_elements=["wallet_address", "telegram_user_id"]
            )
        elif self.dialect == "postgresql":
            stmt = pg_insert(WalletTelegramBinding).values(**values).on_conflict_do_nothing(
                index_elements=["wallet_address", "telegram_user_id"]
            )
        else:
            stmt = insert(WalletTelegramBinding).values(**values)
        try:
            self.db.execute(stmt)
            row = self._written_row(wallet, telegram_id)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            existing = self.lookup_by_wallet(wallet)
            if existing is not None and int(existing.telegram_user_id) == int(telegram_id):
                return existing
            logger.warning("binding_upsert_conflict", extra={"wallet_address": wallet, "telegram_id": int(telegram_id)})
            raise StoreError("binding_conflict") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("binding_upsert_failed")
            raise StoreError("binding_upsert_failed") from exc
        except StoreError:
            self.db.rollback()
            raise
        return row

    def replace_bindings_for(
        self,
        wallet_address: str,
        telegram_id: int,
        *,
        before_write: Callable[[], None] | None = None,
    ) -> WalletTelegramBinding:
        """Drop any binding sharing either side with the pair, then bind the pair.

        ``before_write`` runs inside the same transaction as the write, so its
        own changes commit or roll back together with the new binding.
        """
        wallet = normalize_wallet_address(wallet_address)
        last_error: Exception | None = None
        for attempt in range(1, REPLACE_ATTEMPTS + 1):
            try:
                if before_write is not None:
                    before_write()
                self._write_replacement(wallet, int(telegram_id))
                row = self._written_row(wallet, telegram_id)
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                last_error = exc
                logger.warning(
                    "binding_replace_conflict",
                    extra={"wallet_address": wallet, "telegram_id": int(telegram_id), "attempt": attempt},
                )
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("binding_replace_failed")
                raise StoreError("binding_replace_failed") from exc
            except Exception:
                self.db.rollback()
                raise
            logger.info("binding_replaced", extra={"wallet_address": wallet, "telegram_id": int(telegram_id)})
            return row
        raise StoreError("binding_replace_conflict") from last_error

    def delete_by_wallet(self, wallet_address: str) -> bool:
        wallet = normalize_wallet_address(wallet_address)
        return self._delete(WalletTelegramBinding.wallet_address == wallet, "wallet_address", wallet)

    def delete_by_telegram_id(self, telegram_id: int) -> bool:
        return self._delete(WalletTelegramBinding.telegram_user_id == int(telegram_id), "telegram_id", int(telegram_id))

    def _write_replacement(self, wallet: str, telegram_id: int) -> None:
        values = self._row_values(wallet, telegram_id)
        if self.dialect == "sqlite":
            # REPLACE deletes every row conflicting on any unique constraint, then inserts.
            self.db.execute(insert(WalletTelegramBinding).prefix_with("OR REPLACE").values(**values))
            return
        self.db.execute(
            delete(WalletTelegramBinding).where(
                or_(
                    WalletTelegramBinding.wallet_address == wallet,
                    WalletTelegramBinding.telegram_user_id == telegram_id,
                )
            )
        )
        self.db.execute(insert(WalletTelegramBinding).values(**values))

    def _delete(self, condition, label: str, value) -> bool:
        try:
            result = self.db.execute(delete(WalletTelegramBinding).where(condition))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("binding_delete_failed")
            raise StoreError("binding_delete_failed") from exc
        removed = int(result.rowcount or 0) > 0
        if removed:
            logger.info("binding_deleted", extra={label: value})
        return removed

    def _first(self, stmt) -> WalletTelegramBinding | None:
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("binding_lookup_failed")
            raise StoreError("binding_lookup_failed") from exc

    def _written_row(self, wallet: str, telegram_id: int) -> WalletTelegramBinding:
        """Reads the pair back inside the writing transaction and detaches it.

        The returned row keeps its loaded values after commit, so a later writer
        replacing the binding cannot turn a committed write into a failure.
        """
        stmt = (
            select(WalletTelegramBinding)
            .where(
                WalletTelegramBinding.wallet_address == wallet,
                WalletTelegramBinding.telegram_user_id == int(telegram_id),
            )
            .execution_options(populate_existing=True)
        )
        row = self.db.execute(stmt).scalars().first()
        if row is None:
            raise StoreError("binding_not_visible_after_write")
        self.db.expunge(row)
        return row

    @staticmethod
    def _row_values(wallet: str, telegram_id: int) -> dict:
        return {
            "wallet_address": wallet,
            "telegram_user_id": int(telegram_id),
            "created_at": default_time_provider.utcnow_naive(),
        }
