"""Core Layer - pure domain logic: no network IO, no tasks, no sleeping.

Invariants:
    - No module in core/ imports from services/ or infrastructure/
    - Catalog and hub are mutated only at composition time

Design Decisions:
    - Functional core separated from imperative shell: providers and the loop
      orchestrate IO around these rules
"""
