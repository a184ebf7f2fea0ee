# tests/conftest.py

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.catalog.operators import default_directory
from app.providers.mock import MockGateway
from app.refunds.model import Transaction
from app.refunds.repository import InMemoryRefundRepository
from app.refunds.service import RefundStateMachine
from services.audit_log import InMemoryAuditSink


SENDER_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
def directory():
    return default_directory()


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def repo() -> InMemoryRefundRepository:
    return InMemoryRefundRepository()


@pytest.fixture
def machine(gateway, repo, audit) -> RefundStateMachine:
    return RefundStateMachine(
        gateway,
        repo,
        audit=audit,
        auto_dispatch=True,
        initiate_max_attempts=3,
        initiate_backoff_s=0,
    )


def make_transaction(**overrides) -> Transaction:
    fields = dict(
        id=uuid.uuid4(),
        amount=50_000,
        currency="XOF",
        gateway_reference="gw-tx-001",
        status="COMPLETED",
        external_reference="MBP-20260101-0001",
        completed_at=datetime.now(timezone.utc) - timedelta(days=1),
        sender_id=SENDER_ID,
    )
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture
def settled_tx() -> Transaction:
    return make_transaction()


@pytest.fixture
def make_tx():
    return make_transaction
