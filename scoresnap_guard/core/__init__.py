"""
Core modules for scoresnap-guard.

This package contains admission control, the usage ledger and policy,
response validation, and the error taxonomy.
"""
