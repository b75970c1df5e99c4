"""
Aggregator Tests Package

TEST AXIOMS:
=============
1. Determinism: identical outcomes merge into an identical timeline
2. Isolation: one instance's failure never hides another's messages
3. Explicit failure: every non-success surfaces as a notice
"""
