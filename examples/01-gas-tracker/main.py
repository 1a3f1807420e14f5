"""
Gas Tracker Example

This example demonstrates the basic feature pattern:
1. Describe a feature with a manifest
2. Write a handler (live and mock)
3. Register it and invoke it through the pipeline

Run: python examples/01-gas-tracker/main.py
"""

import asyncio
import json
import random

from featurehost import FeatureRegistry, Handler, PipelineServices
from featurehost.pipeline import FeatureRequest, FixedWindowLimiter

# =============================================================================
# Manifest
# =============================================================================

MANIFEST = {
    "id": "gas-tracker",
    "version": "1.0.0",
    "name": "Gas Tracker",
    "description": "Current priority fee estimates",
    "category": "utility",
    "prompt": {
        "text": "What are gas fees right now?",
        "examples": ["gas on solana", "priority fees"],
    },
    "api": {
        "endpoint": "/api/gas-tracker",
        "method": "GET",
        "parameters": [{"name": "network", "type": "string", "required": True}],
    },
    "response": {"type": "data"},
    "testing": {"mockData": True, "testEndpoint": "/api/gas-tracker/test"},
}


# =============================================================================
# Handler
# =============================================================================


class GasTracker(Handler):
    """Reports a (simulated) priority fee, cached for 10 seconds."""

    async def execute(self, params, ctx):
        network = params["network"]

        async def sample_fee():
            await asyncio.sleep(0.05)  # stands in for an RPC call
            return {"network": network, "priorityFee": random.randint(1000, 9000)}

        fees = await ctx.cached(f"fees:{network}", 10, sample_fee)
        return {"data": fees, "message": f"Priority fee on {network}: {fees['priorityFee']} lamports"}

    async def mock(self, params, ctx):
        return {"data": {"network": params["network"], "priorityFee": 5000}}


# =============================================================================
# Main
# =============================================================================


async def main():
    services = PipelineServices(limiter=FixedWindowLimiter(max_requests=3, window_seconds=60.0))
    registry = FeatureRegistry(services)
    registry.register(MANIFEST, handler=GasTracker())

    print(f"Registry: {registry}")
    print()

    requests = [
        ("GET", "/api/gas-tracker", {"network": "solana"}),
        ("GET", "/api/gas-tracker", {"network": "solana"}),  # served from cache
        ("GET", "/api/gas-tracker/test", {"network": "solana"}),  # mock
        ("GET", "/api/gas-tracker", {}),  # rate limited (4th request)
    ]

    for method, path, query in requests:
        pipeline, test_mode = registry.resolve(method, path)
        envelope = await pipeline.handle(
            FeatureRequest(method=method, path=path, query=query, client_ip="127.0.0.1"),
            test_mode=test_mode,
        )
        print(f"{method} {path} -> {envelope.status_code}")
        print(json.dumps(envelope.to_dict(), indent=2))
        print()

    await services.aclose()


if __name__ == "__main__":
    asyncio.run(main())
