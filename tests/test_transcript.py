# tests/test_transcript.py
from common.transcript import ItemStatus, Transcript
from constants.triggers import TRANSCRIBING_PLACEHOLDER, say_trigger, verification_code_sentence


def test_deltas_concatenate_in_order_and_completion_freezes():
    t = Transcript()
    t.append_delta("a1", "Hel")
    t.append_delta("a1", "lo ")
    t.append_delta("a1", "there")
    t.complete("a1", "Hello there (final)")
    t.append_delta("a1", " late")

    assert len(t) == 1
    item = t.get("a1")
    assert item.text == "Hello there"
    assert item.status == ItemStatus.DONE


def test_completion_text_used_when_no_deltas_arrived():
    t = Transcript()
    t.add("u1", "user", TRANSCRIBING_PLACEHOLDER)
    t.complete("u1", "What is the price?")
    assert t.get("u1").text == "What is the price?"


def test_first_delta_replaces_placeholder():
    t = Transcript()
    t.add("a1", "assistant", "...")
    t.append_delta("a1", "Sure")
    assert t.get("a1").text == "Sure"


def test_duplicate_creation_is_a_noop():
    t = Transcript()
    first = t.add("x", "user", "hello")
    again = t.add("x", "assistant", "other")
    assert again is first
    assert len(t) == 1 and first.role == "user"


def test_long_transport_ids_are_aliased():
    t = Transcript()
    long_id = "item_" + "z" * 40
    item = t.add(long_id, "assistant", "hi")
    assert len(item.item_id) <= 32
    assert t.get(long_id) is item
    assert t.add(long_id, "assistant") is item


def test_visible_hides_triggers_and_structured_replays():
    t = Transcript()
    t.add("u0", "user", "hi", hidden=True, done=True)
    t.add("u1", "user", say_trigger("Welcome back"), done=True)
    t.add("u2", "user", verification_code_sentence("123456"), done=True)
    t.add("u3", "user", "Selected 2025-06-10 at 4:00 PM.", done=True)
    t.add("u4", "user", "Tell me about Skyline Towers", done=True)
    t.add_system("--- Property Assistant ---")

    texts = [i.text for i in t.visible()]
    assert texts == ["Tell me about Skyline Towers", "--- Property Assistant ---"]
    assert len(t.items()) == 6
