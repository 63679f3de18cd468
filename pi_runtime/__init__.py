"""pi_runtime - unified multi-provider LLM client and tool-using agent loop.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)

Design Decisions:
    - Empty __init__.py: explicit imports only, no star exports
"""
