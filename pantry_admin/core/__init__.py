"""
Core modules for Pantry Admin.

This package contains identity reconciliation, statistics aggregation,
cost estimation, cascading deletion and administrator authorization.
"""
