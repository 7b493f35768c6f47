"""Utility functions for the ledger kernel."""

from ledger_kernel.utils.hashing import canonicalize_json, hash_payload, json_safe

__all__ = ["canonicalize_json", "hash_payload", "json_safe"]
