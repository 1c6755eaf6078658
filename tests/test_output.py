import io
import json

from taskpilot.config.models import OutputMode
from taskpilot.output.events import Event, EventType
from taskpilot.output.processor import OutputProcessor


def make_processor(config, mode=OutputMode.HUMAN, verbose=False):
    config.output.mode = mode
    config.output.colors = False
    stdout, stderr = io.StringIO(), io.StringIO()
    return OutputProcessor(config, stdout=stdout, stderr=stderr, verbose=verbose), stdout, stderr


def test_event_to_dict_flattens_data():
    event = Event.state_changed("idle", "awaiting_model")
    data = event.to_dict()
    assert data["type"] == "state.changed"
    assert data["from"] == "idle"
    assert data["to"] == "awaiting_model"
    assert "timestamp" in data


def test_json_mode_writes_one_line_per_event(config):
    processor, stdout, stderr = make_processor(config, OutputMode.JSON)
    processor.handle(Event.agent_start("hi", "s1"))
    processor.handle(Event.tool_end("read_file", {"success": True, "output": "x"}, "c1"))
    processor.print_final("ignored in json mode")

    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [line["type"] for line in lines] == [EventType.AGENT_START.value, EventType.TOOL_END.value]
    assert lines[1]["result"]["output"] == "x"
    assert stderr.getvalue() == ""


def test_human_mode_does_not_repeat_streamed_answer(config):
    processor, stdout, stderr = make_processor(config)
    processor.handle(Event.llm_start("m", []))
    processor.handle(Event.llm_stream("Hello "))
    processor.handle(Event.llm_stream("world"))
    processor.handle(Event.llm_end({}, None))
    processor.handle(Event.agent_end("Hello world"))

    text = stderr.getvalue()
    assert text.count("Hello world") == 1
    assert "Answer" not in text
    assert stdout.getvalue() == ""


def test_human_mode_panels_unstreamed_answer(config):
    processor, _, stderr = make_processor(config)
    processor.handle(Event.llm_start("m", []))
    processor.handle(Event.llm_end({}, None))
    processor.handle(Event.agent_end("Plain answer"))
    assert "Answer" in stderr.getvalue()
    assert "Plain answer" in stderr.getvalue()


def test_human_mode_escapes_markup(config):
    processor, _, stderr = make_processor(config)
    processor.handle(Event.error("UNKNOWN", "bad [bold]thing[/bold]"))
    processor.handle(Event.tool_end("shell_command", {"success": False, "error": "TIMEOUT", "title": "[x]"}, "c"))
    text = stderr.getvalue()
    assert "Error [UNKNOWN]: bad [bold]thing[/bold]" in text
    assert "FAILED TIMEOUT [x]" in text

    processor.handle(Event.agent_end("Edit the list [/etc] and set [bold]x[/bold]"))
    assert "Edit the list [/etc] and set [bold]x[/bold]" in stderr.getvalue()


def test_print_final_goes_to_stdout(config):
    processor, stdout, _ = make_processor(config)
    processor.print_final("the answer")
    assert stdout.getvalue() == "the answer\n"
