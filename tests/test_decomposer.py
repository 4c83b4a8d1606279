import pytest

from agentrelay.decomposer import decompose


def types_of(text):
    return [task.type for task in decompose(text)]


def test_code_request_yields_code_and_synthesis():
    tasks = decompose("Write a function to reverse a string in python")
    assert [t.type for t in tasks] == ["code", "synthesis"]
    assert [t.priority for t in tasks] == [1, 2]
    assert all(t.input == "Write a function to reverse a string in python" for t in tasks)
    assert all(t.status == "pending" for t in tasks)


def test_unmatched_text_yields_only_synthesis():
    tasks = decompose("good morning")
    assert [t.type for t in tasks] == ["synthesis"]
    assert tasks[0].priority == 1


def test_research_and_analysis_are_additive():
    assert types_of("What are the latest trends in AI and analyze pros and cons of LLMs") == [
        "research",
        "analysis",
        "synthesis",
    ]


def test_all_three_keyword_sets_in_table_order():
    tasks = decompose("Explain and compare sorting algorithms, then implement one")
    assert [t.type for t in tasks] == ["code", "research", "analysis", "synthesis"]
    assert [t.priority for t in tasks] == [1, 2, 3, 4]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("TELL ME ABOUT rust", ["research", "synthesis"]),
        ("Evaluate the advantages", ["analysis", "synthesis"]),
        ("a python program", ["code", "synthesis"]),
        ("", ["synthesis"]),
    ],
)
def test_matching_is_case_insensitive_substring(text, expected):
    assert types_of(text) == expected


def test_task_ids_are_unique():
    tasks = decompose("write code, research it and compare")
    assert len({t.id for t in tasks}) == len(tasks)
    assert all(t.id.startswith("task_") for t in tasks)
