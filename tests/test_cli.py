import respx
from httpx import Response

import agentrelay_cli


BASE = "http://api.test"


def test_new_prints_conversation_id(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        route = respx_mock.post(f"{BASE}/api/conversation/new").mock(
            return_value=Response(200, json={"conversationId": "conv_abc"})
        )
        code = agentrelay_cli.main(["--base-url", BASE, "new", "--user", "ivy"])
    assert code == 0
    assert route.calls.last.request.url.params["userId"] == "ivy"
    assert capsys.readouterr().out.strip() == "conv_abc"


def test_history_prints_roles_and_completeness(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.get(f"{BASE}/api/conversations/conv_abc/messages").mock(
            return_value=Response(
                200,
                json={
                    "messages": [
                        {"role": "user", "content": "hi", "metadata": None},
                        {
                            "role": "assistant",
                            "content": "hello",
                            "metadata": {"sourcesUsed": ["research"], "completeness": 0.5},
                        },
                    ]
                },
            )
        )
        code = agentrelay_cli.main(["--base-url", BASE, "history", "conv_abc"])
    out = capsys.readouterr().out
    assert code == 0
    assert "[user] hi" in out
    assert "sources: research  completeness: 0.5" in out


def test_executions_reports_http_failure(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.get(f"{BASE}/api/conversations/conv_x/executions").mock(
            return_value=Response(404, json={"detail": "Conversation not found"})
        )
        code = agentrelay_cli.main(["--base-url", BASE, "executions", "conv_x"])
    assert code == 1
    assert "HTTP 404" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert agentrelay_cli.main([]) == 1
    assert "AgentRelay CLI" in capsys.readouterr().out
