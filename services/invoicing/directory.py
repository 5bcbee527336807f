"""Read-only access to orders, clients, and companies.

These collections are owned by the ordering apps; invoicing only reads
them.
"""

import logging
from collections.abc import Iterable
from typing import Any, Literal

from services.invoicing.identity import find_owner, identity_keys
from services.invoicing.normalizer import (
    ORDER_CLIENT_IDENTITY_SOURCES,
    order_company_identity,
)
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)

ORDERS = "orders"
CLIENTS = "clients"
COMPANIES = "companies"


class OrderDirectory:
    """Queries over the orders, clients, and companies collections."""

    def __init__(self, gateway: StoreGateway) -> None:
        self.gateway = gateway

    async def all_orders(self) -> list[dict[str, Any]]:
        return await self.gateway.find(ORDERS)

    async def all_clients(self) -> list[dict[str, Any]]:
        return await self.gateway.find(CLIENTS)

    async def all_companies(self) -> list[dict[str, Any]]:
        return await self.gateway.find(COMPANIES)

    async def orders_for_client(self, client_identity: str | Iterable[str]) -> list[dict[str, Any]]:
        """Orders placed by an individual client (company orders excluded).

        Args:
            client_identity: One identifier, or every known identifier of the client
        """
        keys = {client_identity} if isinstance(client_identity, str) else set(client_identity)
        orders = await self.all_orders()
        return [
            order
            for order in orders
            if not order_company_identity(order)
            and any(accessor(order) in keys for _name, accessor in ORDER_CLIENT_IDENTITY_SOURCES)
        ]

    async def orders_for_company(self, company_identity: str | Iterable[str]) -> list[dict[str, Any]]:
        """Company orders whose companyUid or embedded company snapshot names the company."""
        keys = {company_identity} if isinstance(company_identity, str) else set(company_identity)
        orders = await self.all_orders()
        return [
            order
            for order in orders
            if order_company_identity(order)
            and (
                order_company_identity(order) in keys
                or bool(identity_keys(order.get("company")) & keys)
            )
        ]

    async def find_client(self, client_identity: str) -> dict[str, Any] | None:
        return find_owner(await self.all_clients(), client_identity)

    async def find_company(self, company_identity: str) -> dict[str, Any] | None:
        """Company by uid or email first, then by any other identifier."""
        companies = await self.all_companies()
        for company in companies:
            if company_identity in (company.get("uid"), company.get("email")):
                return company
        return find_owner(companies, company_identity)

    async def identify_user_type(self, identifier: str) -> Literal["company", "client"] | None:
        """Classify an identifier as a company or a client.

        Checks companies by uid then email, then clients by email then uid.
        """
        for collection, fields, kind in (
            (COMPANIES, ("uid", "email"), "company"),
            (CLIENTS, ("email", "uid"), "client"),
        ):
            for name in fields:
                if await self.gateway.find(collection, {name: identifier}):
                    return kind  # type: ignore[return-value]
        return None
