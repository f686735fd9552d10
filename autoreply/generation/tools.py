"""Closed registry of tools the generation provider may call.

Each tool is a :class:`ToolSpec` pairing a pydantic argument model with an
async handler. The registry is fixed at construction; configured tool names
are validated at startup, and calls naming an unknown tool get an error
result instead of being dispatched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from ..conversations.repository import ConversationRepository
from ..inventory.repository import InventoryRepository
from .base import ToolCall

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Tenant-scoped data a tool handler may touch."""

    tenant_id: UUID
    conversation_id: UUID
    inventory: InventoryRepository
    conversations: ConversationRepository
    escalated: str | None = None
    calls: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ToolResult:
    payload: dict[str, Any]
    found: bool = False


Handler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    arguments: type[BaseModel]
    handler: Handler

    def schema(self) -> dict[str, Any]:
        parameters = self.arguments.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


# Argument models --------------------------------------------------------------
class SearchInventoryArgs(BaseModel):
    query: str = Field(..., min_length=1, description="Product name, brand or category")


class ProductDetailsArgs(BaseModel):
    sku: str = Field(..., min_length=1, description="Product SKU")


class CheckStockArgs(BaseModel):
    sku: str = Field(..., min_length=1, description="Product SKU")
    location: str | None = Field(None, description="Optional store or warehouse")


class EscalateArgs(BaseModel):
    reason: str = Field(..., min_length=1, description="Why a human should take over")
    urgency: Literal["low", "medium", "high"] = "medium"


# Handlers ---------------------------------------------------------------------
async def _search_inventory(args: SearchInventoryArgs, ctx: ToolContext) -> ToolResult:
    items = await asyncio.to_thread(ctx.inventory.search, ctx.tenant_id, [args.query], 10)
    return ToolResult(
        payload={"count": len(items), "items": [item.summary() for item in items]},
        found=bool(items),
    )


async def _get_product_details(args: ProductDetailsArgs, ctx: ToolContext) -> ToolResult:
    item = await asyncio.to_thread(ctx.inventory.get_by_sku, ctx.tenant_id, args.sku)
    if item is None:
        return ToolResult(payload={"error": f"Product {args.sku} not found"})
    details = item.summary()
    details.update(
        {"description": item.description, "location": item.location, "status": item.status}
    )
    return ToolResult(payload=details, found=True)


async def _check_stock(args: CheckStockArgs, ctx: ToolContext) -> ToolResult:
    item = await asyncio.to_thread(ctx.inventory.get_by_sku, ctx.tenant_id, args.sku)
    if item is None:
        return ToolResult(payload={"error": f"Product {args.sku} not found"})
    payload: dict[str, Any] = {
        "sku": item.sku,
        "name": item.name,
        "stock": item.stock,
        "available": item.in_stock,
        "location": args.location or item.location,
    }
    if not item.in_stock:
        payload["expected_restock"] = item.metadata.get("expected_restock")
        if item.category:
            alternatives = await asyncio.to_thread(
                ctx.inventory.find_alternatives, ctx.tenant_id, item.category, item.sku, 3
            )
            payload["alternatives"] = [alt.summary() for alt in alternatives]
    return ToolResult(payload=payload, found=True)


async def _escalate_to_human(args: EscalateArgs, ctx: ToolContext) -> ToolResult:
    reason = f"{args.reason} (urgency: {args.urgency})"
    await asyncio.to_thread(
        ctx.conversations.escalate,
        ctx.tenant_id,
        ctx.conversation_id,
        reason,
        assign_to_human=True,
    )
    ctx.escalated = reason
    return ToolResult(
        payload={"escalated": True, "message": "A team member will take over."}
    )


BUILTIN_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "search_inventory",
        "Search the product catalogue by name, description, SKU, brand or category.",
        SearchInventoryArgs,
        _search_inventory,
    ),
    ToolSpec(
        "get_product_details",
        "Get full details of one product by SKU.",
        ProductDetailsArgs,
        _get_product_details,
    ),
    ToolSpec(
        "check_stock",
        "Check stock for a SKU; suggests in-stock alternatives when it is sold out.",
        CheckStockArgs,
        _check_stock,
    ),
    ToolSpec(
        "escalate_to_human",
        "Hand the conversation to a human team member.",
        EscalateArgs,
        _escalate_to_human,
    ),
)


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec] = BUILTIN_TOOLS) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool '{spec.name}'")
            self._specs[spec.name] = spec

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._specs)

    def validate(self, names: Iterable[str] | None) -> None:
        """Raise ``ValueError`` if ``names`` mentions an unregistered tool."""

        unknown = sorted(set(names or ()) - set(self._specs))
        if unknown:
            raise ValueError(f"Unknown tools configured: {', '.join(unknown)}")

    def schemas(self, allowed: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = self._specs.keys() if allowed is None else allowed
        return [self._specs[name].schema() for name in selected if name in self._specs]

    async def dispatch(self, call: ToolCall, ctx: ToolContext) -> ToolResult:
        ctx.calls.append(call.name)
        spec = self._specs.get(call.name)
        if spec is None:
            logger.warning("generation requested unknown tool %s", call.name)
            return ToolResult(payload={"error": f"Unknown tool: {call.name}"})
        try:
            arguments = spec.arguments.model_validate(call.arguments)
        except ValidationError as exc:
            return ToolResult(
                payload={"error": "Invalid arguments", "details": exc.errors(include_url=False)}
            )
        return await spec.handler(arguments, ctx)
