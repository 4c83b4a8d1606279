"""Keyword classifier that turns one user message into the tasks of a turn.

Matching is additive: a message can trigger several specialist tasks. The
keyword tables are part of the client contract and must not be tuned casually.
"""

from typing import List, Tuple

from .schemas import AgentTask


KEYWORD_TABLES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("code", ("write", "code", "function", "program", "script", "implement")),
    ("research", ("what are", "latest", "trends", "explain", "tell me about", "research")),
    ("analysis", ("analyze", "pros and cons", "compare", "evaluate", "advantages", "disadvantages")),
)


def matches(text: str, keywords: Tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def decompose(user_text: str) -> List[AgentTask]:
    lowered = user_text.lower()
    tasks: List[AgentTask] = []
    for agent_type, keywords in KEYWORD_TABLES:
        if matches(lowered, keywords):
            tasks.append(AgentTask(type=agent_type, input=user_text, priority=len(tasks) + 1))
    # Synthesis always closes the turn.
    tasks.append(AgentTask(type="synthesis", input=user_text, priority=len(tasks) + 1))
    return tasks
