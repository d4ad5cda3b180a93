from rhombus.services.memory_service import ConversationLedger


def test_oldest_turn_is_evicted_beyond_the_limit():
    ledger = ConversationLedger(max_turns=10)
    for i in range(11):
        ledger.record(f"request {i}", f"response {i}")

    turns = ledger.all_turns()
    assert len(ledger) == 10
    assert turns[0].request == "request 1"
    assert turns[-1].request == "request 10"


def test_recent_turns_are_oldest_first():
    ledger = ConversationLedger()
    for i in range(5):
        ledger.record(f"request {i}", "ok")

    assert [t.request for t in ledger.recent_turns(3)] == ["request 2", "request 3", "request 4"]
    assert ledger.recent_turns(0) == []


def test_files_are_deduplicated_within_a_turn():
    ledger = ConversationLedger()
    turn = ledger.record("rename", "done", ["/a.ts", "/b.ts", "/a.ts"])
    assert turn.files_modified == ["/a.ts", "/b.ts"]


def test_recently_modified_files_keeps_the_latest_entries():
    ledger = ConversationLedger()
    ledger.record("one", "ok", ["/a.ts", "/b.ts"])
    ledger.record("two", "ok", ["/c.ts"])

    assert ledger.recently_modified_files() == ["/a.ts", "/b.ts", "/c.ts"]
    assert ledger.recently_modified_files(2) == ["/b.ts", "/c.ts"]


def test_clear_empties_the_ledger():
    ledger = ConversationLedger()
    ledger.record("one", "ok", ["/a.ts"])
    ledger.clear()

    assert len(ledger) == 0
    assert ledger.recently_modified_files() == []
