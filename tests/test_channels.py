import hashlib
import hmac

import pytest

from autoreply.channels import get_adapter
from autoreply.channels.evolution import EvolutionAdapter, extract_text, select_customer_jid
from autoreply.channels.meta import MetaAdapter
from autoreply.channels.meta import extract_text as meta_extract_text


def _upsert(data, event="messages.upsert", instance="shop-main"):
    return {"event": event, "instance": instance, "data": data}


def _item(message_id="wamid-1", text="Do you have boots?", **key):
    return {
        "key": {"id": message_id, "remoteJid": "5511999990001@s.whatsapp.net", **key},
        "pushName": "Ana",
        "message": {"conversation": text},
        "messageTimestamp": 1760000000,
    }


def test_registry_lookup_is_case_insensitive():
    assert get_adapter("Evolution") is EvolutionAdapter
    assert get_adapter("META") is MetaAdapter
    with pytest.raises(KeyError):
        get_adapter("telegram")


def test_parse_single_message():
    adapter = EvolutionAdapter(instance="fallback")

    [event] = adapter.parse_incoming(_upsert(_item()), {})

    assert event.channel == "evolution"
    assert event.instance == "shop-main"
    assert event.channel_message_id == "wamid-1"
    assert event.customer_address == "5511999990001"
    assert event.text == "Do you have boots?"
    assert event.customer_name == "Ana"
    assert event.from_me is False
    assert event.sent_at.timestamp() == 1760000000
    assert event.metadata == {"jid": "5511999990001@s.whatsapp.net", "event": "messages.upsert"}


@pytest.mark.parametrize(
    "data",
    [
        [_item("a"), _item("b")],
        {"messages": [_item("a"), _item("b")]},
    ],
)
def test_parse_batched_payloads(data):
    events = list(EvolutionAdapter(instance="shop-main").parse_incoming(_upsert(data), {}))
    assert [e.channel_message_id for e in events] == ["a", "b"]


def test_other_events_and_items_without_id_are_ignored():
    adapter = EvolutionAdapter(instance="shop-main")
    assert list(adapter.parse_incoming(_upsert(_item(), event="connection.update"), {})) == []
    assert list(adapter.parse_incoming(_upsert({"key": {}}), {})) == []
    assert list(adapter.parse_incoming({"event": "messages.upsert"}, {})) == []


def test_from_me_flag_and_instance_default():
    adapter = EvolutionAdapter(instance="shop-main")
    payload = {"event": "MESSAGES_UPSERT", "data": _item(fromMe=True)}

    [event] = adapter.parse_incoming(payload, {})

    assert event.from_me is True
    assert event.instance == "shop-main"


def test_customer_jid_prefers_personal_over_opaque_ids():
    key = {"remoteJid": "1234567890@lid", "remoteJidAlt": "5511999990001@s.whatsapp.net"}
    assert select_customer_jid(key, {}) == "5511999990001@s.whatsapp.net"
    assert select_customer_jid({"remoteJid": "1234@lid"}, {"sender": "551188@c.us"}) == "551188@c.us"
    assert select_customer_jid({"remoteJid": "1234@lid"}, {}) == "1234@lid"
    assert select_customer_jid({}, {}) == ""


@pytest.mark.parametrize(
    "message, expected",
    [
        ({"conversation": "hi"}, ("text", "hi")),
        ({"extendedTextMessage": {"text": "see link"}}, ("text", "see link")),
        ({"imageMessage": {"url": "x"}}, ("image", "")),
        ({"audioMessage": {}}, ("audio", "")),
        ({"stickerMessage": {}}, ("unknown", "")),
        (None, ("unknown", "")),
    ],
)
def test_extract_text(message, expected):
    assert extract_text(message) == expected


def test_signature_verification():
    adapter = EvolutionAdapter(instance="shop-main")
    body = b'{"event": "messages.upsert"}'
    digest = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    config = {"webhook_secret": "s3cret"}

    assert adapter.verify_signature(body, {"x-evolution-signature": digest}, config)
    assert adapter.verify_signature(body, {"x-evolution-signature": f"sha256={digest}"}, config)
    assert not adapter.verify_signature(body, {"x-evolution-signature": "0" * 64}, config)
    assert not adapter.verify_signature(body, {}, config)
    assert adapter.verify_signature(body, {}, {"webhook_secret": None})


def _cloud_payload(*messages, statuses=None):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "15550001111", "phone_number_id": "1098"},
        "contacts": [{"profile": {"name": "Ana"}, "wa_id": "5511999990001"}],
        "messages": list(messages),
    }
    if statuses is not None:
        value = {"metadata": value["metadata"], "statuses": statuses}
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA-1", "changes": [{"field": "messages", "value": value}]}],
    }


def _cloud_message(message_id="wamid.HBg1", body="Do you have boots?"):
    return {
        "from": "5511999990001",
        "id": message_id,
        "timestamp": "1760000000",
        "type": "text",
        "text": {"body": body},
    }


def test_meta_parses_cloud_api_messages():
    adapter = MetaAdapter(instance="shop-main")

    [event] = adapter.parse_incoming(_cloud_payload(_cloud_message()), {})

    assert event.channel == "meta"
    assert event.instance == "shop-main"
    assert event.channel_message_id == "wamid.HBg1"
    assert event.customer_address == "5511999990001"
    assert event.customer_name == "Ana"
    assert event.text == "Do you have boots?"
    assert event.sent_at.year == 2025
    assert event.metadata == {"phone_number_id": "1098", "source": "meta_api"}


def test_meta_ignores_statuses_other_objects_and_messages_without_id():
    adapter = MetaAdapter(instance="shop-main")
    receipts = _cloud_payload(statuses=[{"id": "wamid.X", "status": "delivered"}])
    other = {"object": "page", "entry": []}
    no_id = _cloud_payload({"from": "5511999990001", "type": "text", "text": {"body": "hi"}})

    assert list(adapter.parse_incoming(receipts, {})) == []
    assert list(adapter.parse_incoming(other, {})) == []
    assert list(adapter.parse_incoming(no_id, {})) == []


@pytest.mark.parametrize(
    "message, expected",
    [
        ({"type": "text", "text": {"body": "hi"}}, ("text", "hi")),
        ({"type": "button", "button": {"text": "Yes"}}, ("text", "Yes")),
        (
            {"type": "interactive", "interactive": {"button_reply": {"title": "Size 42"}}},
            ("text", "Size 42"),
        ),
        ({"type": "image", "image": {"id": "media-1"}}, ("image", "")),
    ],
)
def test_meta_extract_text(message, expected):
    assert meta_extract_text(message) == expected


def test_meta_signature_requires_prefixed_digest():
    adapter = MetaAdapter(instance="shop-main")
    body = b'{"object": "whatsapp_business_account"}'
    digest = hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
    config = {"webhook_secret": "app-secret"}

    assert adapter.verify_signature(body, {"x-hub-signature-256": f"sha256={digest}"}, config)
    assert not adapter.verify_signature(body, {"x-hub-signature-256": digest}, config)
    assert not adapter.verify_signature(body, {}, config)
    assert adapter.verify_signature(body, {}, {})


def test_meta_subscription_handshake():
    adapter = MetaAdapter(instance="shop-main")
    params = {"hub.mode": "subscribe", "hub.verify_token": "tok", "hub.challenge": "1158201444"}

    assert adapter.verify_subscription(params, {"verify_token": "tok"}) == "1158201444"
    assert adapter.verify_subscription(params, {"verify_token": "other"}) is None
    assert adapter.verify_subscription(params, {}) is None
    evolution = EvolutionAdapter(instance="shop-main")
    assert evolution.verify_subscription(params, {"verify_token": "tok"}) is None
