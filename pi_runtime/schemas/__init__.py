"""Pydantic Schemas - every value that crosses a boundary of the runtime.

Invariants:
    - Messages, usage, descriptors and stream events are immutable once built
    - Every schema serializes with model_dump(mode="json") for persistence layers

Design Decisions:
    - Separate from core/: schemas are data contracts, core/ holds the rules over them
"""
