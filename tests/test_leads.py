import asyncio
import uuid

import pytest

from autoreply.leads import InMemoryLeadRepository, LeadStatus, detect_intent
from autoreply.worker.pipeline import OutcomeStatus

from conftest import CUSTOMER


@pytest.mark.parametrize(
    "text, intent",
    [
        ("I want to buy the hiking boot", "purchase"),
        ("How much is the trail running shoe?", "pricing"),
        ("Is the tent available in green?", "availability"),
        ("Do you have size 42?", "availability"),
        ("Tell me about your returns policy", "information"),
        ("What is the price, I need two pairs", "purchase"),
        ("Hello there!", None),
        ("We hiked together last weekend", None),
        ("", None),
    ],
)
def test_detect_intent(text, intent):
    assert detect_intent(text) == intent


def test_repeat_interactions_update_the_same_lead():
    repo = InMemoryLeadRepository()
    tenant_id, conversation_id = uuid.uuid4(), uuid.uuid4()

    first = repo.record_interaction(tenant_id, conversation_id, CUSTOMER, "pricing", "Ana")
    again = repo.record_interaction(tenant_id, uuid.uuid4(), CUSTOMER, "purchase")

    assert first.status is LeadStatus.NEW and first.interaction_count == 1
    assert again.id == first.id
    assert again.status is LeadStatus.CONTACTED
    assert again.interaction_count == 2
    assert again.intent == "pricing"
    assert again.customer_name == "Ana"


def test_converted_lead_stays_converted_and_leads_are_tenant_scoped():
    repo = InMemoryLeadRepository()
    tenant_id, other_id = uuid.uuid4(), uuid.uuid4()
    repo.record_interaction(tenant_id, uuid.uuid4(), CUSTOMER, "purchase")
    repo._leads[(tenant_id, CUSTOMER)].status = LeadStatus.CONVERTED

    lead = repo.record_interaction(tenant_id, uuid.uuid4(), CUSTOMER, "purchase")
    repo.record_interaction(other_id, uuid.uuid4(), "5511999990009", "pricing")

    assert lead.status is LeadStatus.CONVERTED
    assert [lead.customer_address for lead in repo.list_leads(tenant_id)] == [CUSTOMER]
    assert [lead.intent for lead in repo.list_leads(other_id)] == ["pricing"]


def _process(h, text):
    async def scenario():
        lease = await h.enqueue(text)
        outcome = await h.runtime.pipeline.process(lease.job)
        await h.runtime.side_effects.drain()
        return outcome

    return asyncio.run(scenario())


def test_pipeline_captures_a_lead_alongside_the_reply(make_harness):
    h = make_harness()

    outcome = _process(h, "I want to buy the trail running shoe")

    assert outcome.status is OutcomeStatus.DELIVERED
    [lead] = h.leads.list_leads(h.tenant.id)
    assert lead.intent == "purchase"
    assert lead.customer_address == CUSTOMER
    assert lead.conversation_id == h.conversation_id()


def test_lead_is_captured_even_when_the_reply_escalates(make_harness):
    h = make_harness()

    outcome = _process(h, "How much are ceiling fans?")

    assert outcome.reason == "no_context"
    assert [lead.intent for lead in h.leads.list_leads(h.tenant.id)] == ["pricing"]


def test_no_lead_without_buying_intent_or_for_human_conversations(make_harness):
    h = make_harness()
    _process(h, "Hello there!")

    human = make_harness()

    async def scenario():
        lease = await human.enqueue("I want to buy the hiking boot")
        human.conversations.escalate(
            human.tenant.id, lease.job.conversation_id, "manual", assign_to_human=True
        )
        outcome = await human.runtime.pipeline.process(lease.job)
        await human.runtime.side_effects.drain()
        return outcome

    outcome = asyncio.run(scenario())

    assert h.leads.list_leads(h.tenant.id) == []
    assert outcome.reason == "assigned_to_human"
    assert human.leads.list_leads(human.tenant.id) == []
