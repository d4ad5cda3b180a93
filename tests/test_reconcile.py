from rhombus.models.document import TextDocument
from rhombus.services.reconcile import apply_edit, extract_code_from_response


def test_largest_fenced_block_wins():
    reply = "Here you go:\n```ts\nconst a = 1;\n```\nor, fuller:\n```\nconst a = computeDefault();\n```\n"

    code, explanation = extract_code_from_response(reply)

    assert code == "const a = computeDefault();"
    assert explanation == reply


def test_reply_that_is_mostly_code_is_taken_whole():
    reply = "def double(x):\n    return x * 2\n"

    code, explanation = extract_code_from_response(reply)

    assert code == "def double(x):\n    return x * 2"
    assert explanation == ""


def test_indented_block_inside_prose():
    reply = "\n".join([
        "Change it to:",
        "    a = 1",
        "    b = 2",
        "    c = 3",
        "That should work.",
        "Thanks for asking.",
    ])

    code, explanation = extract_code_from_response(reply)

    assert code == "a = 1\n    b = 2\n    c = 3"
    assert explanation == reply


def test_short_reply_with_brackets():
    code, explanation = extract_code_from_response("Use render(items) instead")
    assert code == "Use render(items) instead"
    assert explanation == ""


def test_plain_prose_has_no_code():
    reply = "This looks fine to me. Nothing to change."
    assert extract_code_from_response(reply) == (None, reply)


def test_apply_edit_replaces_line_span():
    document = TextDocument("/a.ts", "a\nb\nc\n")
    assert apply_edit(document, 1, 2, "B") == "a\nB\nc\n"
    assert document.text == "a\nb\nc\n"


def test_apply_edit_clamps_past_the_end():
    document = TextDocument("/a.ts", "a\nb\nc\n")
    assert apply_edit(document, 1, 40, "tail") == "a\ntail"


def test_apply_edit_inserts_when_span_is_empty():
    document = TextDocument("/a.ts", "a\nc\n")
    assert apply_edit(document, 1, 1, "b\n") == "a\nb\nc\n"
