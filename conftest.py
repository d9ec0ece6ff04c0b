# Make `import relay.*` resolve to this checkout when running pytest from the
# repository root without an editable install.
import os
import sys

import httpx
import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from relay.forwarding import InboundRequest, RelayConfig  # noqa: E402
from relay.utils_tests.upstream_mock import TEST_API_KEY, RecordingUpstream  # noqa: E402


@pytest.fixture
def relay_config():
    return RelayConfig(api_key=TEST_API_KEY)


@pytest.fixture
def upstream():
    """Upstream answering every call with 200 {"ok": true}."""
    return RecordingUpstream()


@pytest.fixture
def make_inbound():
    def _make(
        method="POST",
        path="/openai/v1/responses",
        headers=None,
        body=b"",
        query="",
    ):
        return InboundRequest(
            method=method,
            path=path,
            headers=httpx.Headers(headers or {}),
            body=body,
            query=query,
        )

    return _make
