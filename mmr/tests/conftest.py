from __future__ import annotations

import os

import pytest
from hypothesis import HealthCheck, settings
from prometheus_client import CollectorRegistry

from mmr.accumulator import MountainRange
from mmr.config import load_config
from mmr.db.memory import MemoryKV
from mmr.metrics import MMRMetrics
from mmr.storage import KVArchive, NodeStore

settings.register_profile(
    "dev",
    settings(max_examples=60, deadline=None, suppress_health_check=(HealthCheck.too_slow,)),
)
settings.register_profile(
    "ci",
    settings(max_examples=200, deadline=None, suppress_health_check=(HealthCheck.too_slow,)),
)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "ci" if os.environ.get("CI") else "dev"))


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    for k in list(os.environ):
        if k.startswith("MMR_"):
            monkeypatch.delenv(k, raising=False)
    load_config.cache_clear()
    yield
    load_config.cache_clear()


@pytest.fixture
def kv():
    return MemoryKV()


@pytest.fixture
def archive_kv():
    return MemoryKV()


@pytest.fixture
def mmr(kv, archive_kv):
    return MountainRange(NodeStore(kv, hasher_name="sha3_256"), archive=KVArchive(archive_kv))


@pytest.fixture
def metrics():
    return MMRMetrics(registry=CollectorRegistry())
