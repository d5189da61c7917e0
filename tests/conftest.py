"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jwt
import pytest

from scopeguard.catalog import Catalog, default_catalog
from scopeguard.config import Settings, load_settings
from scopeguard.store import DirectoryStore, MemoryStore
from scopeguard.violations import ViolationLog

TEST_SECRET = "scopeguard-test-secret-0123456789abcdef"


def make_token(sub: str = "u-1", secret: str = TEST_SECRET, **claims: Any) -> str:
    """Sign an HS256 token with the test secret."""
    payload = {"sub": sub, **{k: v for k, v in claims.items() if v is not None}}
    return jwt.encode(payload, secret, algorithm="HS256")


def platform_data() -> dict[str, dict[str, dict[str, Any]]]:
    """A small, fully consistent platform dataset."""
    return {
        "branches": {
            "north": {"name": "North"},
            "south": {"name": "South"},
        },
        "users": {
            "op-1": {"role": "operator", "branchId": "main"},
            "admin-n": {"role": "scoped-admin", "branchId": "north"},
            "agent-n": {"role": "scoped-agent", "branchId": "north"},
            "client-1": {"role": "external-client", "companyId": "co-1"},
        },
        "customers": {
            "cust-1": {"branchId": "north", "name": "Acme"},
        },
        "companies": {
            "co-1": {"name": "Acme Holdings"},
        },
        "buildings": {
            "b-1": {"branchId": "north", "customerId": "cust-1"},
            "b-2": {"branchId": "north", "companyId": "co-1"},
        },
        "reports": {
            "r-1": {"branchId": "north", "buildingId": "b-1"},
        },
        "offers": {
            "o-1": {"branchId": "north", "reportId": "r-1"},
        },
        "appointments": {
            "a-1": {"branchId": "north", "assignedInspectorId": "agent-n", "customerId": "cust-1"},
        },
        "scheduledVisits": {
            "v-1": {"branchId": "north", "assignedInspectorId": "agent-n", "buildingId": "b-1"},
        },
        "serviceAgreements": {
            "sa-1": {"customerId": "cust-1", "buildingId": "b-1"},
        },
    }


def write_store(root: Path, data: dict[str, dict[str, dict[str, Any]]]) -> Path:
    for collection, docs in data.items():
        directory = root / collection
        directory.mkdir(parents=True, exist_ok=True)
        for record_id, doc in docs.items():
            (directory / f"{record_id}.json").write_text(json.dumps(doc), encoding="utf-8")
    return root


@pytest.fixture
def catalog() -> Catalog:
    return default_catalog()


@pytest.fixture
def memory_store() -> MemoryStore:
    """A consistent platform dataset in memory."""
    return MemoryStore(platform_data())


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """A consistent platform dataset on disk."""
    return write_store(tmp_path / "store", platform_data())


@pytest.fixture
def directory_store(store_root: Path) -> DirectoryStore:
    return DirectoryStore(store_root)


@pytest.fixture
def violation_log(tmp_path: Path) -> ViolationLog:
    return ViolationLog(tmp_path / "state" / "violations.jsonl")


@pytest.fixture
def settings(tmp_path: Path, store_root: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings for the on-disk store with state under tmp_path/state."""
    monkeypatch.setenv("SCOPEGUARD_TEST_SECRET", TEST_SECRET)
    config = tmp_path / "scopeguard.yml"
    config.write_text(
        "\n".join(
            [
                "store: store",
                "state_dir: state",
                "identity:",
                "  token:",
                "    secret: env:SCOPEGUARD_TEST_SECRET",
                "repair:",
                "  countdown_seconds: 0",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return load_settings(config, env={})


@pytest.fixture
def token_factory():
    """Build signed tokens: token_factory(sub, role=..., branchId=...)."""
    return make_token
