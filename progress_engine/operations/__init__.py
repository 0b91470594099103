"""
Operations Layer

Business logic that composes the catalog read port and the atomic progress
store into the engine's workflows. Operations never touch sessions directly;
every mutation goes through a single atomic store call.

Each operations module focuses on one step of event processing:
- Matcher: eligible tasks for an event
- ProgressTracker: task hits, skips and mission roll-ups
- RewardGrantor: exactly-once reward issuance
- LeaderboardUpdater: running per-game totals
- EventProcessor: the entry point orchestrating the steps above
"""
