"""
DCA Bot Example

This example demonstrates a wallet-gated trading feature:
1. Load a YAML manifest that grants executeTrade
2. Return a trade action from the handler
3. Consume the envelope's actions on the UI side with ActionDispatcher

Run: python examples/02-dca-bot/main.py
"""

import asyncio
import json

from featurehost import FeatureRegistry, Handler, Permission, PipelineServices
from featurehost.actions import ActionDispatcher, TradeAction
from featurehost.auth import StaticTokenAuthority
from featurehost.pipeline import FeatureRequest

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"

MANIFEST = """
id: dca-bot
version: 2.1.0
name: DCA Bot
category: trading
prompt: Set up dollar-cost averaging into a token
api:
  endpoint: /api/dca-bot
  method: POST
  requiresWallet: true
  parameters:
    - token
    - name: amount
      type: number
      required: true
    - name: intervalHours
      type: integer
response:
  type: trade
permissions:
  readBalance: true
  executeTrade: true
"""


# =============================================================================
# Handler
# =============================================================================


class DcaBot(Handler):
    async def execute(self, params, ctx):
        ctx.require(Permission.EXECUTE_TRADE)

        interval = int(params.get("intervalHours", 24))
        amount = float(params["amount"])
        return {
            "data": {"token": params["token"], "amount": amount, "intervalHours": interval},
            "message": f"Buying {amount:g} of {params['token']} every {interval}h",
            "intent": "trade",
            "actions": [
                {"type": "trade", "payload": {"side": "buy", "token": params["token"], "amount": amount}},
                {"type": "alert", "payload": {"level": "info", "text": "DCA schedule created"}},
            ],
        }


# =============================================================================
# UI side
# =============================================================================


def open_trade_modal(action: TradeAction):
    print(f"  [ui] confirm trade: {action.payload}")
    return "confirmed"


async def show_toast(action):
    print(f"  [ui] toast: {action.payload['text']}")
    return "shown"


# =============================================================================
# Main
# =============================================================================


async def main():
    services = PipelineServices(authority=StaticTokenAuthority(["demo-key"]))
    registry = FeatureRegistry(services)
    registry.register(MANIFEST, handler=DcaBot())

    bodies = [
        {"token": "SOL", "amount": 25},  # no wallet
        {"token": "SOL", "amount": 25, "walletAddress": WALLET, "intervalHours": "12"},
    ]

    dispatcher = ActionDispatcher(on_trade=open_trade_modal, on_alert=show_toast)

    for body in bodies:
        pipeline, test_mode = registry.resolve("POST", "/api/dca-bot")
        envelope = await pipeline.handle(
            FeatureRequest(
                method="POST",
                path="/api/dca-bot",
                body=json.dumps(body).encode(),
                client_ip="127.0.0.1",
            ),
            test_mode=test_mode,
        )
        print(f"POST /api/dca-bot -> {envelope.status_code}")
        print(json.dumps(envelope.to_dict(), indent=2))

        if envelope.success:
            results = await dispatcher.dispatch_all(envelope.actions)
            print(f"  [ui] results: {results}")
        print()

    await services.aclose()


if __name__ == "__main__":
    asyncio.run(main())
