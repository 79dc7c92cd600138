"""
channels — Push delivery backends.

Each gateway exposes:
    async send(messages) → PushReport

Gateways raise PushDeliveryError on failure; the notifier decides what a
failed send means for the rest of its pass.
"""
