from tokentrader.infrastructure.storage.trade_journal import JsonlTradeJournal, MemoryTradeJournal


def test_jsonl_journal_appends_one_line_per_trade(tmp_path):
    journal = JsonlTradeJournal(tmp_path / "nested" / "trades.jsonl")
    assert journal.read_all() == []

    journal.append({"token": "SOL", "profit": 1.5, "close_reason": "TAKE_PROFIT"})
    journal.append({"token": "JUP", "profit": -0.5, "close_reason": "STOP_LOSS"})

    lines = journal.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    records = journal.read_all()
    assert [r["token"] for r in records] == ["SOL", "JUP"]
    assert records[1]["close_reason"] == "STOP_LOSS"


def test_jsonl_journal_reopens_existing_file(tmp_path):
    path = tmp_path / "trades.jsonl"
    JsonlTradeJournal(path).append({"token": "SOL"})
    reopened = JsonlTradeJournal(path)
    reopened.append({"token": "BONK"})
    assert [r["token"] for r in reopened.read_all()] == ["SOL", "BONK"]


def test_memory_journal_copies_records():
    journal = MemoryTradeJournal()
    record = {"token": "SOL"}
    journal.append(record)
    record["token"] = "changed"
    assert journal.read_all() == [{"token": "SOL"}]
