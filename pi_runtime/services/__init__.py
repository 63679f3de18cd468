"""Services Layer - AI client facade, chat streams, tool dispatch and the agent loop.

Invariants:
    - Services orchestrate IO around core/ rules; they never decode provider wire formats
    - Tool dispatch uses explicit dict mapping (no auto-discovery)
"""
