"""Agents used by the support triage guide.

The ``test`` model keeps the guide runnable without API keys. Swap in a real
model such as ``openai:gpt-4o`` to call an LLM.
"""

from pydantic_ai import Agent

classifier = Agent(
    "test",
    name="classifier",
    system_prompt="Answer with one word: billing, technical or account.",
)

account_lookup = Agent(
    "test",
    name="account_lookup",
    system_prompt="Summarise the customer's account in one sentence.",
)

writer = Agent(
    "test",
    name="writer",
    system_prompt="Write a short, friendly support reply.",
)

templater = Agent("test", name="templater")

pager = Agent("test", name="pager")
