"""Queue-driven analysis pipeline.

A dispatcher discovers unprocessed work and bulk-enqueues it into the SQLite
queue, then launches worker chains. Each worker invocation resets stale
items, claims bounded batches, runs every item of a batch concurrently and
schedules a bounded successor when eligible work remains. Executors must be
idempotent per subject because the queue delivers at least once.
"""
