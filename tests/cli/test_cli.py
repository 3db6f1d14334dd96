import io
import json

import pytest

from apps.cli.main import _sampling_from_args, build_parser, main
from apps.cli.prompt_file import PromptFileError, load_system_prompt
from apps.cli.stdio_hook import StdioHook
from lua_llama.engine.chat_types import ChunkEvent, EndEvent, Greedy, Role, StartEvent, Temperature, TopP, Turn
from lua_llama.script.base import ScriptEvaluationError


def test_parser_defaults():
    args = build_parser().parse_args(["-m", "model", "-p", "prompt.toml", "-t", "qwen"])
    assert args.model_path == "model"
    assert args.model_type == "qwen"
    assert args.full_chat is False
    assert args.n_ctx == 2048
    assert args.n_batch == 512
    assert args.backend == "transformers"
    assert _sampling_from_args(args) == Greedy()


def test_parser_sampling_flags():
    parser = build_parser()
    base = ["-m", "m", "-p", "p", "-t", "llama3", "--full-chat"]
    args = parser.parse_args(base + ["--temperature", "0.7"])
    assert args.full_chat is True
    assert _sampling_from_args(args) == Temperature(0.7)
    args = parser.parse_args(base + ["--top-p", "0.9", "--min-keep", "3"])
    assert _sampling_from_args(args) == TopP(0.9, min_keep=3)
    with pytest.raises(SystemExit):
        parser.parse_args(base + ["--temperature", "0.7", "--top-p", "0.9"])


def test_parser_rejects_unknown_model_type():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["-m", "m", "-p", "p", "-t", "gpt"])


def test_main_reports_bad_prompt_file(tmp_path, capsys):
    missing = tmp_path / "missing.toml"
    rc = main(["-m", "model", "-p", str(missing), "-t", "qwen"])
    assert rc == 1
    assert "Cannot read prompt file" in capsys.readouterr().err


# -----------------------------------------------------------------------------
# Prompt files
# -----------------------------------------------------------------------------


def test_load_system_prompt_toml(tmp_path):
    path = tmp_path / "prompt.toml"
    path.write_text(
        '[[content]]\nrole = "system"\nmessage = "Answer in Lua."\n\n'
        '[[content]]\nrole = "tool"\nmessage = "{}"\n',
        encoding="utf-8",
    )
    assert load_system_prompt(path) == [Turn(Role.SYSTEM, "Answer in Lua."), Turn(Role.TOOL, "{}")]


def test_load_system_prompt_json(tmp_path):
    path = tmp_path / "prompt.json"
    path.write_text(json.dumps({"content": [{"role": "narrator", "message": "hi"}]}), encoding="utf-8")
    assert load_system_prompt(path) == [Turn("narrator", "hi")]


@pytest.mark.parametrize(
    "body",
    [
        "title = 'x'\n",
        "content = 'nope'\n",
        "[[content]]\nmessage = 'no role'\n",
        "content = [",
    ],
)
def test_load_system_prompt_rejects_bad_files(tmp_path, body):
    path = tmp_path / "prompt.toml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(PromptFileError):
        load_system_prompt(path)


# -----------------------------------------------------------------------------
# Stdio hook
# -----------------------------------------------------------------------------


def test_stdio_hook_reads_lines_until_eof():
    out = io.StringIO()
    hook = StdioHook(stdin=io.StringIO("hello\r\nbye\n"), stdout=out)
    assert hook.get_input() == "hello"
    assert hook.get_input() == "bye"
    assert hook.get_input() is None
    assert out.getvalue() == "User:\nUser:\nUser:\n"


def test_stdio_hook_prints_token_events():
    out = io.StringIO()
    hook = StdioHook(stdin=io.StringIO(), stdout=out)
    for event in (StartEvent(), ChunkEvent("x"), ChunkEvent("()"), EndEvent("x()")):
        hook.on_token(event)
    assert out.getvalue() == "AI:\nx()\n"


def test_stdio_hook_message_envelopes():
    hook = StdioHook(stdin=io.StringIO(), stdout=io.StringIO())
    assert json.loads(hook.parse_user_input("hi")) == {"role": "user", "message": "hi"}
    assert json.loads(hook.parse_script_result('{"status": "ok"}')) == {
        "role": "tool",
        "message": {"status": "ok"},
    }
    assert json.loads(hook.parse_script_result("rain")) == {"role": "tool", "message": "rain"}
    assert json.loads(hook.parse_script_error(ScriptEvaluationError("bad"))) == {
        "role": "tool",
        "message": {"status": "error", "error": "bad"},
    }


# -----------------------------------------------------------------------------
# Demo Lua environment
# -----------------------------------------------------------------------------


def test_lua_env_tools():
    pytest.importorskip("lupa", reason="lupa not installed")
    from apps.cli.lua_env import new_lua_env

    out = io.StringIO()
    env = new_lua_env(out)
    assert env.evaluate('reply("on my way")') is None
    assert json.loads(env.evaluate('send_sms("555", "hello")')) == {"status": "ok"}
    assert env.evaluate("get_weather()") == "rain"
    assert "reply: on my way" in out.getvalue()
    assert "lua: Sending SMS to 555: hello" in out.getvalue()
