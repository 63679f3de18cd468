"""Infrastructure Layer - provider adapters, wire codecs and cross-cutting concerns.

Invariants:
    - Every external call is wrapped with retry/timeout/error mapping
    - Adapters emit canonical fragments and schemas only; no SDK type leaks upward

Design Decisions:
    - Wire codecs (*_wire.py) are pure and separate from the IO-bearing providers
"""
