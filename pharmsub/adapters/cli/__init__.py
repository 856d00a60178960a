"""Command-line interface adapters.

Provides CLI commands for pharmacy staff:
- list / details / stats: Inspect subscriptions with derived status
- create / edit: Manage subscription records
- ship: Record a fulfillment shipment
- log: Add to the communication log
- delete: Remove a subscription permanently
"""
