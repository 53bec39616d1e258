"""Accounting tools exposed through the protocol endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from accounting_gateway.clients.accounting import AccountingClient
from accounting_gateway.core.errors import ValidationError
from accounting_gateway.services.token_vault import TokenVault

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ToolArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tenant_id: Optional[str] = Field(
        default=None, alias="tenantId", description="Specific tenant ID"
    )


class ListAccountsArguments(ToolArguments):
    where: Optional[str] = Field(default=None, description="Filter conditions")
    order_by: Optional[str] = Field(default=None, alias="orderBy", description="Sort order")


class ListContactsArguments(ToolArguments):
    where: Optional[str] = Field(default=None, description="Search/filter conditions")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=100, ge=1, le=1000, alias="pageSize", description="Items per page")


class ListInvoicesArguments(ToolArguments):
    status: Optional[str] = Field(default=None, description="Invoice status filter")
    date_from: Optional[date] = Field(default=None, alias="dateFrom", description="Start date (YYYY-MM-DD)")
    date_to: Optional[date] = Field(default=None, alias="dateTo", description="End date (YYYY-MM-DD)")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=100, ge=1, le=1000, alias="pageSize", description="Items per page")


class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address_type: str = Field(..., alias="addressType")
    address_line1: str = Field(..., alias="addressLine1")
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    country: Optional[str] = None


class CreateContactArguments(ToolArguments):
    name: str = Field(..., min_length=1, description="Contact name")
    email: Optional[str] = Field(default=None, pattern=_EMAIL_PATTERN, description="Contact email")
    contact_type: Literal["CUSTOMER", "SUPPLIER"] = Field(..., alias="contactType")
    addresses: List[Address] = Field(default_factory=list)


class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str
    quantity: float = Field(..., gt=0)
    unit_amount: float = Field(..., alias="unitAmount")
    account_code: str = Field(..., alias="accountCode")
    tax_type: Optional[str] = Field(default=None, alias="taxType")


class CreateInvoiceArguments(ToolArguments):
    type: Literal["ACCREC", "ACCPAY"]
    contact_id: str = Field(..., min_length=1, alias="contactId", description="Contact ID")
    invoice_date: date = Field(..., alias="date", description="Invoice date")
    due_date: date = Field(..., alias="dueDate", description="Due date")
    line_items: List[LineItem] = Field(..., min_length=1, alias="lineItems")
    reference: Optional[str] = Field(default=None, description="Invoice reference")

    @model_validator(mode="after")
    def _due_after_issue(self) -> "CreateInvoiceArguments":
        if self.due_date < self.invoice_date:
            raise ValueError("dueDate must not be before date")
        return self


class UpdateContactArguments(ToolArguments):
    contact_id: str = Field(..., min_length=1, alias="contactId", description="Contact ID to update")
    name: Optional[str] = Field(default=None, min_length=1, description="New contact name")
    email: Optional[str] = Field(default=None, pattern=_EMAIL_PATTERN, description="New contact email")

    @model_validator(mode="after")
    def _has_changes(self) -> "UpdateContactArguments":
        if self.name is None and self.email is None:
            raise ValueError("Provide name or email to update")
        return self


ToolHandler = Callable[[str, str, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    arguments: type[ToolArguments]
    handler: ToolHandler

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.arguments.model_json_schema(by_alias=True),
        }


def tool_result(summary: str, data: Any) -> Dict[str, Any]:
    return {
        "content": [
            {"type": "text", "text": summary},
            {"type": "json", "json": data},
        ]
    }


def _xero_date(value: date) -> str:
    return f"DateTime({value.year},{value.month:02d},{value.day:02d})"


def _strip_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


class ToolRegistry:
    """Catalog of tools plus the glue that runs them against one tenant."""

    def __init__(self, vault: TokenVault, accounting_client: AccountingClient) -> None:
        self._vault = vault
        self._client = accounting_client
        self._tools: Dict[str, ToolDefinition] = {}
        for definition in (
            ToolDefinition(
                "list-accounts",
                "List chart of accounts with optional filtering",
                ListAccountsArguments,
                self._list_accounts,
            ),
            ToolDefinition(
                "list-contacts",
                "List customer/supplier contacts with search capabilities",
                ListContactsArguments,
                self._list_contacts,
            ),
            ToolDefinition(
                "list-invoices",
                "List sales invoices with status and date filters",
                ListInvoicesArguments,
                self._list_invoices,
            ),
            ToolDefinition(
                "create-contact",
                "Create a new customer or supplier contact",
                CreateContactArguments,
                self._create_contact,
            ),
            ToolDefinition(
                "create-invoice",
                "Create a new sales or purchase invoice",
                CreateInvoiceArguments,
                self._create_invoice,
            ),
            ToolDefinition(
                "update-contact",
                "Update an existing contact",
                UpdateContactArguments,
                self._update_contact,
            ),
        ):
            self._tools[definition.name] = definition

    def catalog(self) -> List[Dict[str, Any]]:
        return [definition.describe() for definition in self._tools.values()]

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def parse_arguments(self, definition: ToolDefinition, arguments: Dict[str, Any]) -> ToolArguments:
        try:
            return definition.arguments.model_validate(arguments)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid arguments for {definition.name}",
                code="invalid_arguments",
                detail={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            ) from exc

    async def call(
        self,
        definition: ToolDefinition,
        arguments: ToolArguments,
        *,
        account_id: str,
        tenant_id: str,
    ) -> Dict[str, Any]:
        access_token = await self._vault.get_valid_access_token(account_id, tenant_id)
        logger.info("Running tool %s for account %s tenant %s", definition.name, account_id, tenant_id)
        return await definition.handler(access_token, tenant_id, arguments)

    async def _list_accounts(
        self, access_token: str, tenant_id: str, args: ListAccountsArguments
    ) -> Dict[str, Any]:
        accounts = await self._client.fetch(
            access_token,
            tenant_id,
            "Accounts",
            {"where": args.where, "order": args.order_by},
        )
        return tool_result(f"Found {len(accounts)} accounts", accounts)

    async def _list_contacts(
        self, access_token: str, tenant_id: str, args: ListContactsArguments
    ) -> Dict[str, Any]:
        contacts = await self._client.fetch(
            access_token,
            tenant_id,
            "Contacts",
            {"where": args.where, "page": args.page, "pageSize": args.page_size},
        )
        return tool_result(f"Found {len(contacts)} contacts", contacts)

    async def _list_invoices(
        self, access_token: str, tenant_id: str, args: ListInvoicesArguments
    ) -> Dict[str, Any]:
        clauses = []
        if args.date_from:
            clauses.append(f"Date >= {_xero_date(args.date_from)}")
        if args.date_to:
            clauses.append(f"Date <= {_xero_date(args.date_to)}")
        invoices = await self._client.fetch(
            access_token,
            tenant_id,
            "Invoices",
            {
                "Statuses": args.status,
                "where": " AND ".join(clauses) or None,
                "page": args.page,
                "pageSize": args.page_size,
            },
        )
        return tool_result(f"Found {len(invoices)} invoices", invoices)

    async def _create_contact(
        self, access_token: str, tenant_id: str, args: CreateContactArguments
    ) -> Dict[str, Any]:
        payload = _strip_none(
            {
                "Name": args.name,
                "EmailAddress": args.email,
                "IsCustomer": args.contact_type == "CUSTOMER",
                "IsSupplier": args.contact_type == "SUPPLIER",
                "Addresses": [
                    _strip_none(
                        {
                            "AddressType": address.address_type,
                            "AddressLine1": address.address_line1,
                            "City": address.city,
                            "Region": address.region,
                            "PostalCode": address.postal_code,
                            "Country": address.country,
                        }
                    )
                    for address in args.addresses
                ]
                or None,
            }
        )
        created = await self._client.create(access_token, tenant_id, "Contacts", payload)
        return tool_result(f"Created {args.contact_type.lower()} contact {args.name}", created)

    async def _create_invoice(
        self, access_token: str, tenant_id: str, args: CreateInvoiceArguments
    ) -> Dict[str, Any]:
        payload = _strip_none(
            {
                "Type": args.type,
                "Contact": {"ContactID": args.contact_id},
                "Date": args.invoice_date.isoformat(),
                "DueDate": args.due_date.isoformat(),
                "Reference": args.reference,
                "LineItems": [
                    _strip_none(
                        {
                            "Description": item.description,
                            "Quantity": item.quantity,
                            "UnitAmount": item.unit_amount,
                            "AccountCode": item.account_code,
                            "TaxType": item.tax_type,
                        }
                    )
                    for item in args.line_items
                ],
            }
        )
        created = await self._client.create(access_token, tenant_id, "Invoices", payload)
        return tool_result(f"Created {args.type} invoice with {len(args.line_items)} line items", created)

    async def _update_contact(
        self, access_token: str, tenant_id: str, args: UpdateContactArguments
    ) -> Dict[str, Any]:
        payload = _strip_none(
            {"ContactID": args.contact_id, "Name": args.name, "EmailAddress": args.email}
        )
        updated = await self._client.update(
            access_token, tenant_id, "Contacts", args.contact_id, payload
        )
        return tool_result(f"Updated contact {args.contact_id}", updated)


__all__ = [
    "CreateContactArguments",
    "CreateInvoiceArguments",
    "ListAccountsArguments",
    "ListContactsArguments",
    "ListInvoicesArguments",
    "ToolArguments",
    "ToolDefinition",
    "ToolRegistry",
    "UpdateContactArguments",
    "tool_result",
]
