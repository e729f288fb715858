"""
Company-intelligence enrichment.

Leaf-first: quality_gate and fallback_profile are pure; executor runs one
attempt; orchestrator owns the persisted state machine and retries;
triggers are the entry points used by registration and the admin API.
"""
