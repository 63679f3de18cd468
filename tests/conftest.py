"""Root conftest - shared test configuration."""

import os

# Ensure tests don't accidentally use real API keys
os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test-fake-key")
