"""
Edge daemon package for the solar reading sync pipeline.

Polls energy readings from a Sungrow hybrid inverter via WiNet-S Modbus TCP,
buffers them in a durable pending-submission queue, and delivers them
idempotently to a durable append log (local SQLite or the remote ledger).

CHANGELOG:
- 2026-10-14: Repurpose for reading queue and durable log (STORY-001)
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""
