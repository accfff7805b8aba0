"""Whoop integration: OAuth credential lifecycle and vendor data sync.

Subpackages:
    adapters/ — vendor HTTP client and record normalizers
    sync/     — sync engine and idempotent-write helpers

Core modules:
    base   — credential and cache dataclasses, storage ABCs
    tokens — token lifecycle manager and OAuth state machine
"""
