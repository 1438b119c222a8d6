# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import hashlib
import itertools
import pytest
from datetime import datetime, timedelta, timezone

# Set test environment before any application module is imported
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['STORE_BACKEND'] = 'memory'
os.environ['ANCHORING_ENABLED'] = 'false'
os.environ['LOG_LEVEL'] = 'WARNING'

from services.engine import EngineConfig, IntegrityEngine  # noqa: E402
from services.kv_store import InMemoryKeyValueStore  # noqa: E402

START_TIME = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

_identity_counter = itertools.count(1)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START_TIME):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def make_identity_hash(label: str = None) -> str:
    """A verifier-style identity hash, unique per call unless a label is given."""
    seed = label if label is not None else f"person-{next(_identity_counter)}"
    return "0x" + hashlib.sha256(seed.encode('utf-8')).hexdigest()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def engine_config():
    return EngineConfig(reservation_wait=timedelta(seconds=1))


@pytest.fixture
def engine(store, engine_config, clock):
    """Engine over an in-memory store with a controllable clock."""
    return IntegrityEngine(store, config=engine_config, clock=clock)


@pytest.fixture
def identity_hash():
    return make_identity_hash()


@pytest.fixture
def registered(engine, identity_hash):
    """A household registered in the engine fixture."""
    result = engine.register_household(identity_hash, "New Delhi", 4, "+91-98765-43210")
    assert result.success, result.error
    return result.value


@pytest.fixture
def app(engine):
    from app import create_app
    application = create_app(engine)
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def registration_payload():
    """Valid registration request body."""
    return {
        "identity_proof": {
            "hashed_identifier": make_identity_hash(),
            "credential_subject": {
                "nationality": "IND",
                "minimum_age": True
            }
        },
        "household": {
            "location": "New Delhi",
            "household_size": 4,
            "contact": "+91-98765-43210"
        }
    }
