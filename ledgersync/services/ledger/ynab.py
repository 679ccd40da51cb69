"""
YNAB Ledger Client

Talks to the YNAB REST API (v1) over httpx.

DESIGN DECISION: Retries live here and only here. Transport errors,
429 and 5xx are retried with exponential backoff (tenacity); every other
non-success status is turned into a typed LedgerError on the first attempt.
"""

from datetime import date
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgersync.config import YnabSettings
from ledgersync.models.ledger import (
    LedgerTransaction,
    NewTransaction,
    TransactionPage,
    TransactionUpdate,
)
from ledgersync.services.ledger.interface import (
    DuplicateImportError,
    LedgerClientInterface,
    LedgerError,
    LedgerUnavailableError,
    TransactionNotFoundError,
)


logger = structlog.get_logger(__name__)


class YnabLedgerClient(LedgerClientInterface):
    """
    LedgerClientInterface over the YNAB API.

    Usage:
        async with YnabLedgerClient() as client:
            page = await client.list_transactions(budget_id, watermark=42)
    """

    def __init__(
        self,
        settings: Optional[YnabSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: API settings. Loaded from the environment if None.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        self._settings = settings or YnabSettings()
        self._client = httpx.AsyncClient(
            base_url=self._settings.base_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {self._settings.token}",
                "Accept": "application/json",
            },
            timeout=self._settings.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "YnabLedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """One attempt. Raises LedgerUnavailableError for retryable failures."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise LedgerUnavailableError(f"YNAB request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise LedgerUnavailableError(
                f"YNAB returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_retries),
            wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds, max=10),
            retry=retry_if_exception_type(LedgerUnavailableError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "ynab_request_retry",
                        method=method,
                        path=path,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._send(method, path, **kwargs)
        raise LedgerUnavailableError("YNAB request was not attempted")

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return response.text[:200]
        return error.get("detail") or error.get("name") or response.reason_phrase

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        detail = self._error_detail(response)
        if response.status_code == 404:
            raise TransactionNotFoundError(f"Not found: {detail}", status_code=404)
        raise LedgerError(
            f"YNAB rejected request ({response.status_code}): {detail}",
            status_code=response.status_code,
        )

    @staticmethod
    def _data(response: httpx.Response) -> dict[str, Any]:
        return response.json().get("data", {})

    async def list_transactions(
        self,
        budget_id: str,
        since_date: Optional[date] = None,
        watermark: Optional[int] = None,
    ) -> TransactionPage:
        params: dict[str, Any] = {}
        if since_date is not None:
            params["since_date"] = since_date.isoformat()
        if watermark is not None:
            params["last_knowledge_of_server"] = watermark

        response = await self._request("GET", f"budgets/{budget_id}/transactions", params=params)
        self._raise_for_status(response)
        data = self._data(response)

        page = TransactionPage(
            transactions=[LedgerTransaction.model_validate(t) for t in data.get("transactions", [])],
            watermark=data.get("server_knowledge", watermark or 0),
        )
        logger.debug(
            "ynab_transactions_listed",
            budget_id=budget_id,
            count=len(page.transactions),
            watermark=page.watermark,
        )
        return page

    async def list_account_transactions(
        self,
        budget_id: str,
        account_id: str,
        since_date: Optional[date] = None,
    ) -> list[LedgerTransaction]:
        params = {"since_date": since_date.isoformat()} if since_date else {}
        response = await self._request(
            "GET",
            f"budgets/{budget_id}/accounts/{account_id}/transactions",
            params=params,
        )
        self._raise_for_status(response)
        transactions = [
            LedgerTransaction.model_validate(t)
            for t in self._data(response).get("transactions", [])
        ]
        return [t for t in transactions if not t.deleted]

    async def get_transaction(self, budget_id: str, transaction_id: str) -> Optional[LedgerTransaction]:
        response = await self._request("GET", f"budgets/{budget_id}/transactions/{transaction_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return LedgerTransaction.model_validate(self._data(response)["transaction"])

    async def create_transaction(self, budget_id: str, transaction: NewTransaction) -> LedgerTransaction:
        response = await self._request(
            "POST",
            f"budgets/{budget_id}/transactions",
            json={"transaction": transaction.to_payload()},
        )
        if response.status_code == 409:
            raise DuplicateImportError(transaction.import_id, self._error_detail(response))
        self._raise_for_status(response)

        data = self._data(response)
        if transaction.import_id in (data.get("duplicate_import_ids") or []):
            raise DuplicateImportError(transaction.import_id)
        if not data.get("transaction"):
            raise LedgerError("YNAB accepted the create but returned no transaction")

        created = LedgerTransaction.model_validate(data["transaction"])
        logger.info(
            "ynab_transaction_created",
            budget_id=budget_id,
            transaction_id=created.id,
            import_id=transaction.import_id,
        )
        return created

    async def update_transaction(
        self,
        budget_id: str,
        transaction_id: str,
        update: TransactionUpdate,
    ) -> LedgerTransaction:
        response = await self._request(
            "PUT",
            f"budgets/{budget_id}/transactions/{transaction_id}",
            json={"transaction": update.to_payload()},
        )
        self._raise_for_status(response)
        updated = LedgerTransaction.model_validate(self._data(response)["transaction"])
        logger.info("ynab_transaction_updated", budget_id=budget_id, transaction_id=transaction_id)
        return updated

    async def delete_transaction(self, budget_id: str, transaction_id: str) -> bool:
        response = await self._request("DELETE", f"budgets/{budget_id}/transactions/{transaction_id}")
        if response.status_code == 404:
            logger.info("ynab_transaction_already_absent", budget_id=budget_id, transaction_id=transaction_id)
            return True
        self._raise_for_status(response)
        logger.info("ynab_transaction_deleted", budget_id=budget_id, transaction_id=transaction_id)
        return True
