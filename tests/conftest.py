"""Root test configuration for QR Lens.

Pins the result store to the in-memory backend so no test touches the
user's home directory.
"""

import pytest

from tests.fakes import FakeCaptureHost, FakeFetchHost


@pytest.fixture(autouse=True)
def memory_result_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("qrlens.config.RESULT_STORE", "memory")


@pytest.fixture
def fetch_host() -> FakeFetchHost:
    return FakeFetchHost()


@pytest.fixture
def capture_host() -> FakeCaptureHost:
    return FakeCaptureHost()
