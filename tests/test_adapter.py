"""
Tests for converting chat-completions messages into backend turns.
"""
from grappa import should

from castbridge.adapter import content_to_text, convert_messages
from castbridge.models import ChatMessage


def test_convert_messages_preserves_length_and_order():
    messages = [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "second"},
        {"role": "user", "content": "third"},
    ]

    converted = convert_messages(messages)

    len(converted) | should.equal(len(messages))
    [m.text for m in converted] | should.equal(["be brief", "first", "second", "third"])


def test_only_assistant_role_keeps_its_author():
    roles = ["user", "assistant", "system", "tool", "developer", ""]
    converted = convert_messages([{"role": role, "content": "x"} for role in roles])

    [m.author for m in converted] | should.equal(
        ["user", "assistant", "user", "user", "user", "user"]
    )


def test_text_parts_are_concatenated_in_order():
    content = [
        {"type": "text", "text": "Describe "},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
        {"type": "text", "text": "this image"},
        {"type": "input_audio", "input_audio": {"data": "...", "format": "wav"}},
    ]

    converted = convert_messages([ChatMessage(role="user", content=content)])

    converted[0].text | should.equal("Describe this image")


def test_malformed_content_degrades_to_empty_text():
    content_to_text(None) | should.equal("")
    content_to_text(42) | should.equal("")
    content_to_text({"type": "text", "text": "not a list"}) | should.equal("")
    content_to_text(["bare string", {"type": "text"}, {"type": "text", "text": 7}]) | should.equal("")


def test_convert_messages_tolerates_non_mapping_entries():
    converted = convert_messages(["not a message", None])

    [(m.author, m.text) for m in converted] | should.equal([("user", ""), ("user", "")])


def test_backend_message_wire_format():
    converted = convert_messages([{"role": "assistant", "content": "hi"}])

    converted[0].model_dump() | should.equal({
        "author": "assistant",
        "content": {"text": "hi"},
    })


def test_empty_input_yields_empty_output():
    convert_messages([]) | should.equal([])
