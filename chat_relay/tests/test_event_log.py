from chat_relay.infrastructure.logging.events import EventLog, mask_secret


def test_entries_are_recorded_in_order():
    log = EventLog()
    log.log("info", "Client initialized", {"provider": "Gemini"})
    log.log("request", "Sending request")
    entries = log.entries
    assert [e.summary for e in entries] == ["Client initialized", "Sending request"]
    assert entries[0].category == "info"
    assert entries[0].details == {"provider": "Gemini"}
    assert entries[0].id != entries[1].id


def test_listener_failure_never_reaches_caller():
    seen = []

    def listener(entry):
        seen.append(entry.summary)
        raise RuntimeError("ui closed")

    log = EventLog(listener=listener)
    log.log("error", "Export Failed")
    assert seen == ["Export Failed"]
    assert len(log.entries) == 1


def test_clear_drops_history():
    log = EventLog()
    log.log("info", "a")
    log.clear()
    assert log.entries == []


def test_mask_secret():
    assert mask_secret("sk-abcdef") == "sk-..."
    assert mask_secret("") == ""
