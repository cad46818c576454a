"""
Integration Tests Package

End-to-end checks of the story engine over in-memory and file-backed
collaborators.

TEST AXIOMS:
=============
1. Determinism: same photos + clock = identical arcs
2. Isolation: one detector's timeout or failure never hides another's arc
3. Explicit failure: store outages surface as errors, never as empty results
"""
