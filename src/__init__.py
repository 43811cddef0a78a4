"""
Roster-driven provisioning tools.

Grants folder access to roster principals in quota-aware, checkpointed
batches and distributes per-row documents into roster folders.
"""

__version__ = "1.0.0"
