"""Payout settlement services.

Database plumbing lives in :mod:`kasmoni.services.db`; the engine itself is
split into the slot resolver, the deduction calculator, the payout record
reconciler, the pending write outbox and the aggregate reporter.
"""
