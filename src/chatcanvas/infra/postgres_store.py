"""PostgreSQL implementations of the store, ledger and catalog contracts.

Each method runs in its own short transaction. psycopg2 errors are
translated to PersistenceError here so callers never see driver types.
"""

from __future__ import annotations

from typing import Any

from chatcanvas.domain.errors import PersistenceError
from chatcanvas.domain.models import (
    CreditProduct,
    DeliveryStatus,
    GenerationContext,
    InteractionKind,
    Message,
    OnboardingPhase,
    TransactionType,
    User,
)
from chatcanvas.domain.ports import UNSET
from chatcanvas.infra.db import translate_errors, txn
from chatcanvas.infra.repositories import (
    credits_repository,
    messages_repository,
    products_repository,
    users_repository,
)
from chatcanvas.observability.logging import get_logger
from chatcanvas.observability.redaction import safe_log_context

logger = get_logger(__name__)


class PostgresConversationStore:
    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn

    def upsert_user(
        self,
        phone_number: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        with translate_errors("upsert_user"), txn(dsn=self._dsn) as cur:
            return users_repository.upsert_user(
                cur,
                phone_number=phone_number,
                first_name=first_name,
                last_name=last_name,
            )

    def get_user(self, user_id: str) -> User | None:
        with translate_errors("get_user"), txn(dsn=self._dsn) as cur:
            return users_repository.get_user(cur, user_id=user_id)

    def update_user(
        self,
        user_id: str,
        *,
        onboarding_phase: OnboardingPhase | None = None,
        email: str | None = None,
        last_interaction_kind: InteractionKind | None = None,
        last_generation_context: GenerationContext | None = UNSET,
    ) -> User:
        changes: dict[str, Any] = {}
        if onboarding_phase is not None:
            changes["onboarding_phase"] = onboarding_phase
        if email is not None:
            changes["email"] = email
        if last_interaction_kind is not None:
            changes["last_interaction_kind"] = last_interaction_kind
        if last_generation_context is not UNSET:
            changes["last_generation_context"] = last_generation_context

        with translate_errors("update_user"), txn(dsn=self._dsn) as cur:
            if changes:
                user = users_repository.update_user(cur, user_id=user_id, changes=changes)
            else:
                user = users_repository.get_user(cur, user_id=user_id)
        if user is None:
            raise PersistenceError("update_user failed: user not found")
        return user

    def append_message(self, message: Message) -> bool:
        with translate_errors("append_message"), txn(dsn=self._dsn) as cur:
            return messages_repository.insert_message(cur, message)

    def recent_messages(self, user_id: str, limit: int) -> list[Message]:
        with translate_errors("recent_messages"), txn(dsn=self._dsn) as cur:
            return messages_repository.list_recent_messages(cur, user_id=user_id, limit=limit)

    def update_message_status(self, external_id: str, status: DeliveryStatus) -> bool:
        with translate_errors("update_message_status"), txn(dsn=self._dsn) as cur:
            return messages_repository.advance_status(cur, external_id=external_id, status=status)


class PostgresCreditLedger:
    """Credit ledger over credit_accounts + credit_transactions.

    try_debit holds the account row lock for the whole check-and-insert, so
    two concurrent debits for the same user serialize and cannot overdraw.
    """

    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn

    def try_debit(
        self,
        user_id: str,
        amount: int,
        product_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        if amount <= 0:
            raise ValueError("debit amount must be positive")

        with translate_errors("try_debit"), txn(dsn=self._dsn) as cur:
            credits_repository.lock_account(cur, user_id=user_id)
            balance = credits_repository.compute_balance(cur, user_id=user_id)
            if balance < amount:
                return False
            credits_repository.insert_transaction(
                cur,
                user_id=user_id,
                amount=-amount,
                transaction_type=TransactionType.USE,
                product_type=product_type,
                metadata=metadata,
            )

        logger.info(
            "credits debited",
            extra={"extra_fields": safe_log_context(user_id=user_id, amount=amount, product_type=product_type)},
        )
        return True

    def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        product_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        if transaction_type == TransactionType.USE:
            raise ValueError("use transactions go through try_debit")

        with translate_errors("credit"), txn(dsn=self._dsn) as cur:
            credits_repository.lock_account(cur, user_id=user_id)
            credits_repository.insert_transaction(
                cur,
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type,
                product_type=product_type,
                metadata=metadata,
            )

        logger.info(
            "credits added",
            extra={
                "extra_fields": safe_log_context(
                    user_id=user_id,
                    amount=amount,
                    type=transaction_type.value,
                )
            },
        )

    def get_balance(self, user_id: str) -> int:
        with translate_errors("get_balance"), txn(dsn=self._dsn) as cur:
            return credits_repository.compute_balance(cur, user_id=user_id)


class PostgresProductCatalog:
    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn

    def cheapest_active_product(self) -> CreditProduct | None:
        with translate_errors("cheapest_active_product"), txn(dsn=self._dsn) as cur:
            return products_repository.get_cheapest_active(cur)

    def get_active_product(self, product_id: str) -> CreditProduct | None:
        with translate_errors("get_active_product"), txn(dsn=self._dsn) as cur:
            return products_repository.get_active_product(cur, product_id=product_id)
