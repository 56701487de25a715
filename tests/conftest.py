"""Shared test fixtures for the expertise engine."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed 'current time' so recency and staleness are deterministic."""
    return FIXED_NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def domain_file(tmp_path):
    """Path of a domain file inside a fresh expertise directory."""
    expertise_dir = tmp_path / ".mulch" / "expertise"
    expertise_dir.mkdir(parents=True)
    return expertise_dir / "testing.jsonl"


@pytest.fixture
def store(domain_file, clock):
    """DomainStore with short lock timings for fast contention tests."""
    from expertise.storage import DomainStore

    return DomainStore(domain_file, lock_timeout=0.5, lock_retry_interval=0.01, clock=clock)


@pytest.fixture
def project(tmp_path, clock):
    """Initialized project with two domains."""
    from expertise.project import ExpertiseProject

    project = ExpertiseProject.init(tmp_path, clock=clock)
    project.add_domain("backend")
    project.add_domain("frontend")
    return project


@pytest.fixture
def sample_records(now):
    """One record of every variant, all recorded at ``now``."""
    from expertise.models import Convention, Decision, Failure, Guide, Pattern, Reference

    return [
        Convention(content="Use snake_case for Python modules", recorded_at=now),
        Pattern(
            name="repository-pattern",
            description="Wrap SQL access in repository classes",
            files=["src/db/repo.py"],
            recorded_at=now,
        ),
        Failure(
            description="Tests hang when the lock file is left behind",
            resolution="Delete stale .lock files older than 30s",
            recorded_at=now,
        ),
        Decision(title="Use WAL mode", rationale="Concurrent readers with one writer", recorded_at=now),
        Reference(name="sqlite-docs", description="SQLite pragma reference", recorded_at=now),
        Guide(name="release-checklist", description="Bump version, tag, publish", recorded_at=now),
    ]
