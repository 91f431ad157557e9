"""Shared pytest fixtures for flowguard tests.

Provides sample workflow documents, isolated settings and an in-memory
policy client.
"""

import os

import pytest

from flowguard.config import PolicySettings, get_settings
from flowguard.core.schemas import Workflow
from flowguard.drift.mocks import MockPolicyClient
from flowguard.validation import parse_workflow

CRON_WORKFLOW = """
name: daily-sync
version: "1.0"
description: Sync GitHub issues into Postgres
triggers:
  - type: cron
    schedule: "0 * * * *"
nodes:
  fetch:
    path: nodes/fetch.ts
  store:
    path: nodes/store.ts
edges:
  - from: fetch
    to: store
contract:
  version: "1"
  dependencies:
    github:
      protocol: https
      host: api.github.com
      port: 443
      auth:
        type: bearer
        secret: github.token
    postgres-driver:
      protocol: jsr
      host: "@db/postgres"
      version: "0.19"
"""

WEBHOOK_WORKFLOW = """
name: order-hook
version: "2.1"
triggers:
  - type: webhook
    path: /orders
    name: orders
nodes:
  handle:
    path: nodes/handle.ts
deployment:
  namespace: shop
contract:
  dependencies:
    db:
      protocol: postgresql
      host: orders.db.svc.cluster.local
      database: orders
      user: app
      auth:
        type: password
        secret: orders-db.password
    events:
      protocol: nats
      host: nats.messaging.svc.cluster.local
      subject: orders.created
    stripe:
      protocol: https
      host: api.stripe.com
      auth:
        type: bearer
        secret: stripe.api-key
"""

BOOTSTRAP_WORKFLOW = """
name: fetch-modules
version: "1.0"
triggers:
  - type: manual
nodes:
  run:
    path: nodes/run.ts
contract:
  dependencies:
    api:
      protocol: https
      host: api.example.com
    registry:
      protocol: https
      host: jsr.io
    npm-registry:
      protocol: https
      host: registry.npmjs.org
"""


def _parse(document: str) -> Workflow:
    workflow, errors = parse_workflow(document)
    assert errors == []
    assert workflow is not None
    return workflow


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Clear FLOWGUARD_* variables and the cached settings around each test."""
    for key in list(os.environ):
        if key.upper().startswith("FLOWGUARD_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> PolicySettings:
    """Default settings."""
    return PolicySettings()


@pytest.fixture
def cron_workflow() -> Workflow:
    """Cron-triggered workflow with one fixed host and one jsr module."""
    return _parse(CRON_WORKFLOW)


@pytest.fixture
def webhook_workflow() -> Workflow:
    """Webhook-triggered workflow with in-cluster and external dependencies."""
    return _parse(WEBHOOK_WORKFLOW)


@pytest.fixture
def bootstrap_workflow() -> Workflow:
    """Manual workflow that still declares package registry hosts."""
    return _parse(BOOTSTRAP_WORKFLOW)


@pytest.fixture
def policy_client() -> MockPolicyClient:
    """Empty in-memory policy client."""
    return MockPolicyClient()
