"""
Repositories package — read-only reference data.

Repositories are injected into the wizard; nothing here is mutated
after it is loaded.
"""
