from __future__ import annotations

import uuid

import pytest
from sqlalchemy.orm import sessionmaker

from autoreply.models import AgentConfiguration, Base, ChannelInstance, Subscription, Tenant
from autoreply.models.session import as_sqlalchemy_url, get_engine
from autoreply.tenants.models import AgentSettings
from autoreply.tenants.repository import SqlTenantRepository


@pytest.fixture
def factory(tmp_path):
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'tenants.db'}", future=True)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.drop_all(engine)
    engine.dispose()


def _add_tenant(factory, *, subscription=None, config=None, status="active"):
    tenant_id = uuid.uuid4()
    with factory.begin() as session:
        tenant = Tenant(id=tenant_id, business_name="Trail Outfitters", status=status)
        tenant.channel_instances.append(ChannelInstance(instance_name=f"shop-{tenant_id.hex[:6]}"))
        if config is not None:
            tenant.agent_configuration = AgentConfiguration(**config)
        if subscription is not None:
            tenant.subscription = Subscription(**subscription)
        session.add(tenant)
    return tenant_id


def test_resolves_tenant_by_instance(factory):
    tenant_id = _add_tenant(factory, status="suspended")
    repo = SqlTenantRepository(factory)

    tenant = repo.resolve_tenant_by_instance(f"shop-{tenant_id.hex[:6]}")

    assert tenant.id == tenant_id
    assert tenant.business_name == "Trail Outfitters"
    assert not tenant.is_active
    assert repo.resolve_tenant_by_instance("nobody") is None
    assert repo.get_tenant(uuid.uuid4()) is None


def test_agent_settings_mapping(factory):
    tenant_id = _add_tenant(
        factory,
        config={
            "role_name": "Maya",
            "role_type": "sales",
            "maintenance_mode": True,
            "maintenance_message": "Back at 9am.",
            "forbidden_topics": ["politics"],
            "blocked_terms": ["guarantee"],
            "allowed_tools": ["check_stock"],
            "confidence_threshold": 0.7,
        },
    )
    repo = SqlTenantRepository(factory)

    settings = repo.get_agent_settings(tenant_id)

    assert settings.role_name == "Maya"
    assert settings.forbidden_topics == ("politics",)
    assert settings.blocked_terms == ("guarantee",)
    assert settings.allowed_tools == ("check_stock",)
    assert settings.confidence_threshold == 0.7
    assert not settings.accepts_automation
    assert settings.maintenance_message == "Back at 9am."


def test_missing_configuration_uses_defaults(factory):
    tenant_id = _add_tenant(factory)
    assert SqlTenantRepository(factory).get_agent_settings(tenant_id) == AgentSettings()


@pytest.mark.parametrize(
    "subscription, allowed, reason",
    [
        ({"status": "active", "message_limit": 10, "messages_used": 3}, True, None),
        ({"status": "trial", "message_limit": 10, "messages_used": 10}, False, "limit_reached"),
        ({"status": "past_due", "message_limit": 10, "messages_used": 0}, False, "subscription_past_due"),
        (None, True, "no_subscription"),
    ],
)
def test_quota_status(factory, subscription, allowed, reason):
    tenant_id = _add_tenant(factory, subscription=subscription)

    quota = SqlTenantRepository(factory).check_quota(tenant_id)

    assert quota.allowed is allowed
    assert quota.reason == reason


def test_increment_usage_never_exceeds_limit(factory):
    tenant_id = _add_tenant(
        factory, subscription={"status": "active", "message_limit": 2, "messages_used": 0}
    )
    repo = SqlTenantRepository(factory)

    assert [repo.increment_usage(tenant_id) for _ in range(3)] == [True, True, False]
    quota = repo.check_quota(tenant_id)
    assert quota.used == 2
    assert quota.remaining == 0
    assert quota.reason == "limit_reached"


def test_increment_usage_without_subscription(factory):
    tenant_id = _add_tenant(factory)
    assert SqlTenantRepository(factory).increment_usage(tenant_id) is True


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgres://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql+psycopg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("sqlite:///:memory:", "sqlite:///:memory:"),
    ],
)
def test_database_url_normalisation(url, expected):
    assert as_sqlalchemy_url(url) == expected


def test_engine_requires_url():
    with pytest.raises(RuntimeError):
        get_engine("")
