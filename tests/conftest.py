"""
Pytest configuration and fixtures for featurehost tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from featurehost.pipeline import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from featurehost.auth import StaticTokenAuthority  # noqa: E402
from featurehost.cache import InMemoryCache  # noqa: E402
from featurehost.pipeline import FixedWindowLimiter, PipelineServices  # noqa: E402

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
API_KEY = "test-api-key"


@pytest.fixture
def wallet_address():
    """Valid base58 public key."""
    return WALLET


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def gas_tracker_manifest():
    """Public, read-only feature with one required parameter and a test route."""
    return {
        "id": "gas-tracker",
        "version": "1.0.0",
        "name": "Gas Tracker",
        "description": "Current network fees",
        "author": "featurehost",
        "icon": "⛽",
        "prompt": {"text": "What are gas fees right now?", "examples": ["gas on solana"]},
        "category": "utility",
        "api": {
            "endpoint": "/api/gas-tracker",
            "method": "GET",
            "requiresAuth": False,
            "requiresWallet": False,
            "parameters": [
                {"name": "network", "type": "string", "required": True},
                {"name": "samples", "type": "integer", "required": False},
            ],
        },
        "response": {"type": "data", "format": "json"},
        "permissions": {"readBalance": False, "executeTrade": False, "accessPortfolio": False},
        "testing": {"mockData": True, "testEndpoint": "/api/gas-tracker/test"},
    }


@pytest.fixture
def dca_bot_manifest():
    """Wallet-bound trading feature that may stage trades."""
    return {
        "id": "dca-bot",
        "version": "2.1.0",
        "name": "DCA Bot",
        "prompt": "Set up a dollar cost averaging plan",
        "category": "trading",
        "api": {
            "endpoint": "/api/dca-bot",
            "method": "POST",
            "requiresAuth": False,
            "requiresWallet": True,
            "parameters": ["token", {"name": "amount", "type": "number", "required": True}],
        },
        "response": {"type": "trade", "format": "json"},
        "permissions": {"readBalance": True, "executeTrade": True},
    }


@pytest.fixture
def services():
    """Pipeline services with small, deterministic limits."""
    return PipelineServices(
        limiter=FixedWindowLimiter(max_requests=30, window_seconds=60.0),
        authority=StaticTokenAuthority([API_KEY]),
        cache=InMemoryCache(),
        execution_timeout=2.0,
    )
