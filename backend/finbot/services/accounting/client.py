"""HTTP client for the external accounting API.

Every failure reaching callers is an ``AccountingError`` with a generic
message. Status codes, error bodies and transport errors go to the log only.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from finbot.core.config import Settings, get_settings
from finbot.services.errors import AccountingError

from .schema import ExternalInvoicePayload

logger = logging.getLogger(__name__)


def _error_detail(body: Any) -> Optional[str]:
    """Return a log line when the body reports errors, else None."""
    if not isinstance(body, dict):
        return None
    if body.get("ErrorNumber") is not None:
        return f"ErrorNumber={body.get('ErrorNumber')} {body.get('Type', '')}: {body.get('Message', '')}"
    invoices = body.get("Invoices") or body.get("Elements") or []
    for item in invoices if isinstance(invoices, list) else []:
        if not isinstance(item, dict):
            continue
        errors = item.get("ValidationErrors") or []
        if item.get("HasErrors") or errors:
            messages = "; ".join(str(e.get("Message", e)) for e in errors if e) or "HasErrors"
            return f"validation errors: {messages}"
    return None


class AccountingClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.accounting_timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: str,
        tenant_id: Optional[str] = None,
        json: Optional[dict] = None,
        action: str,
    ) -> Any:
        headers = self._auth_headers(access_token)
        if tenant_id:
            headers["xero-tenant-id"] = tenant_id
        try:
            async with self._client() as client:
                resp = await client.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as exc:
            logger.error("Accounting %s transport error: %s", action, exc)
            raise AccountingError() from exc

        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = None

        if resp.status_code >= 400:
            logger.error(
                "Accounting %s failed: HTTP %s %s",
                action,
                resp.status_code,
                _error_detail(body) or resp.text[:500],
            )
            raise AccountingError()

        detail = _error_detail(body)
        if detail:
            logger.error("Accounting %s rejected: %s", action, detail)
            raise AccountingError()
        return body

    async def resolve_tenant_id(self, access_token: str) -> str:
        """Configured tenant, else the first connection visible to the token."""
        if self._settings.accounting_tenant_id:
            return self._settings.accounting_tenant_id
        body = await self._request(
            "GET",
            self._settings.accounting_connections_url,
            access_token=access_token,
            action="connections lookup",
        )
        if isinstance(body, list):
            for connection in body:
                if isinstance(connection, dict) and connection.get("tenantId"):
                    return str(connection["tenantId"])
        logger.error("Accounting connections lookup returned no tenant")
        raise AccountingError()

    async def create_invoice(self, payload: ExternalInvoicePayload, access_token: str) -> dict[str, Any]:
        if not access_token:
            logger.error("Accounting create_invoice called without a credential")
            raise AccountingError()
        tenant_id = await self.resolve_tenant_id(access_token)
        body = await self._request(
            "POST",
            f"{self._settings.accounting_api_base_url.rstrip('/')}/Invoices",
            access_token=access_token,
            tenant_id=tenant_id,
            json={"Invoices": [payload.to_api()]},
            action="create invoice",
        )
        invoices = (body or {}).get("Invoices") or []
        created = invoices[0] if invoices and isinstance(invoices[0], dict) else {}
        logger.info("Accounting invoice created: %s", created.get("InvoiceID", "no id returned"))
        return {**payload.to_api(), **created}

    async def get_invoice(self, invoice_id: str, access_token: str) -> dict[str, Any]:
        if not access_token:
            logger.error("Accounting get_invoice called without a credential")
            raise AccountingError()
        tenant_id = await self.resolve_tenant_id(access_token)
        body = await self._request(
            "GET",
            f"{self._settings.accounting_api_base_url.rstrip('/')}/Invoices/{invoice_id}",
            access_token=access_token,
            tenant_id=tenant_id,
            action="get invoice",
        )
        invoices = (body or {}).get("Invoices") or []
        if not invoices or not isinstance(invoices[0], dict):
            logger.error("Accounting invoice %s not found in response", invoice_id)
            raise AccountingError()
        return invoices[0]
