"""Durable vote and post job queues and the worker that drains them.

Why a database-backed queue instead of a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Jobs are rows next to the votes and users they refer to, so enqueue,
idempotency guards and completion all share one transaction boundary.
Claiming is a conditional UPDATE on the row status; several worker
processes can poll the same SQLite file without a lock server.

Flow per job: claim -> idempotency guard -> prompt -> streamed completion
-> parse/validate -> persist result and complete in one transaction.
Any failure charges one retry; the row returns to pending until
`max_retries` is exhausted and it becomes failed.
"""
