import asyncio
import uuid

import pytest

from autoreply.conversations.models import Assignment, ConversationStatus
from autoreply.conversations.repository import InMemoryConversationRepository
from autoreply.generation.base import ToolCall
from autoreply.generation.tools import BUILTIN_TOOLS, ToolContext, ToolRegistry, ToolSpec
from autoreply.inventory.repository import InMemoryInventoryRepository, InventoryItem

TENANT = uuid.uuid4()
OTHER_TENANT = uuid.uuid4()


@pytest.fixture
def ctx():
    inventory = InMemoryInventoryRepository(
        [
            InventoryItem(TENANT, "TRS-42", "Trail Running Shoe", category="footwear",
                          brand="Summit", price=89.9, stock=12, location="Store A"),
            InventoryItem(TENANT, "RDS-07", "Road Shoe", category="footwear",
                          brand="Summit", price=79.0, stock=3),
            InventoryItem(TENANT, "HKB-01", "Hiking Boot", category="footwear",
                          price=149.0, stock=0, metadata={"expected_restock": "2026-11-01"}),
            InventoryItem(OTHER_TENANT, "OTH-01", "Trail Shoe", category="footwear", stock=5),
        ]
    )
    conversations = InMemoryConversationRepository()
    conversation, _ = conversations.get_or_create_open_conversation(TENANT, "5511999990001")
    return ToolContext(
        tenant_id=TENANT,
        conversation_id=conversation.id,
        inventory=inventory,
        conversations=conversations,
    )


def _dispatch(ctx, name, **arguments):
    registry = ToolRegistry()
    return asyncio.run(registry.dispatch(ToolCall("call-1", name, arguments), ctx))


def test_schemas_describe_pydantic_arguments():
    schemas = {s["function"]["name"]: s for s in ToolRegistry().schemas()}

    check_stock = schemas["check_stock"]["function"]["parameters"]
    assert check_stock["required"] == ["sku"]
    assert set(check_stock["properties"]) == {"sku", "location"}
    assert "title" not in check_stock
    escalate = schemas["escalate_to_human"]["function"]["parameters"]
    assert escalate["properties"]["urgency"]["enum"] == ["low", "medium", "high"]


def test_schemas_follow_the_allowed_order_and_skip_unknown_names():
    names = [
        s["function"]["name"]
        for s in ToolRegistry().schemas(["check_stock", "search_inventory", "nope"])
    ]
    assert names == ["check_stock", "search_inventory"]


def test_duplicate_tool_names_are_rejected():
    with pytest.raises(ValueError, match="Duplicate tool 'check_stock'"):
        ToolRegistry([*BUILTIN_TOOLS, ToolSpec("check_stock", "again", BUILTIN_TOOLS[0].arguments,
                                               BUILTIN_TOOLS[0].handler)])


def test_search_is_scoped_to_the_tenant(ctx):
    result = _dispatch(ctx, "search_inventory", query="shoe")

    assert result.found
    assert [item["sku"] for item in result.payload["items"]] == ["TRS-42", "RDS-07"]
    assert result.payload["count"] == 2
    assert ctx.calls == ["search_inventory"]


def test_product_details(ctx):
    result = _dispatch(ctx, "get_product_details", sku="TRS-42")

    assert result.found
    assert result.payload["location"] == "Store A"
    assert result.payload["price"] == 89.9


def test_missing_product_is_an_error_payload(ctx):
    result = _dispatch(ctx, "get_product_details", sku="NOPE")

    assert not result.found
    assert result.payload == {"error": "Product NOPE not found"}


def test_check_stock_in_stock(ctx):
    result = _dispatch(ctx, "check_stock", sku="TRS-42", location="Warehouse")

    assert result.payload["available"] is True
    assert result.payload["location"] == "Warehouse"
    assert "alternatives" not in result.payload


def test_check_stock_out_of_stock_suggests_alternatives(ctx):
    result = _dispatch(ctx, "check_stock", sku="HKB-01")

    assert result.found
    assert result.payload["available"] is False
    assert result.payload["expected_restock"] == "2026-11-01"
    assert [alt["sku"] for alt in result.payload["alternatives"]] == ["TRS-42", "RDS-07"]


def test_escalate_assigns_conversation_to_human(ctx):
    result = _dispatch(ctx, "escalate_to_human", reason="wants a manager", urgency="high")

    assert result.payload["escalated"] is True
    conversation = ctx.conversations.get_conversation(TENANT, ctx.conversation_id)
    assert conversation.assignment is Assignment.HUMAN
    assert conversation.status is ConversationStatus.ESCALATED
    assert ctx.escalated == "wants a manager (urgency: high)"


def test_unknown_tool_is_not_dispatched(ctx):
    result = _dispatch(ctx, "send_coupon", code="SAVE10")

    assert result.payload == {"error": "Unknown tool: send_coupon"}
    assert ctx.calls == ["send_coupon"]


def test_invalid_arguments_are_reported(ctx):
    result = _dispatch(ctx, "escalate_to_human", reason="help", urgency="critical")

    assert result.payload["error"] == "Invalid arguments"
    assert result.payload["details"][0]["loc"] == ("urgency",)
    conversation = ctx.conversations.get_conversation(TENANT, ctx.conversation_id)
    assert conversation.assignment is Assignment.AUTOMATED
