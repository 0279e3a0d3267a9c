"""
Validation package — identity codec, field rules and business rules.

Everything here is pure and offline.
"""
