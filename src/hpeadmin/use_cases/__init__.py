"""Use-case level logic.

These modules implement the per-resource commands (subscriptions, device
subscriptions, auto-subscription policy, COM external services) on top of
`GreenLakeClient`.

They should be:
- free of CLI code
- unit-testable with a stub client
- explicit about per-item outcomes (see `bulk_status`)
"""
