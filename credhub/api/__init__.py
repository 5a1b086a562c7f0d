"""Credential hub REST API package.

Sub-modules expose FastAPI routers for each resource:
- twitch_configs: Twitch application credentials
- tokens: app / user token flows, refresh, validation
- webhooks: EventSub subscriptions and reconciliation
"""
