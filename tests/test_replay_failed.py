import json

from scripts import replay_failed


class DummyResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")


class DummySession:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.payloads = []

    def post(self, url, json=None, timeout=None):
        self.payloads.append(json)
        return DummyResponse(self.statuses.pop(0))


def test_replay_unwraps_payloads_and_keeps_failures(tmp_path, monkeypatch):
    items = {"items": [{"identity": "0x1:0x2", "name": "Blue Bottle"}]}
    (tmp_path / "failed-1.json").write_text(json.dumps(items), encoding="utf-8")
    (tmp_path / "failed-2.json").write_text(
        json.dumps({"status": 500, "text": "oops", "payload": items}), encoding="utf-8"
    )
    session = DummySession([200, 503])
    monkeypatch.setattr(replay_failed, "build_retrying_session", lambda: session)
    monkeypatch.setattr(replay_failed.time, "sleep", lambda _: None)

    replayed = replay_failed.replay(tmp_path, "https://ingest.local/items")

    assert replayed == 1
    assert session.payloads == [items, items]
    assert [path.name for path in tmp_path.iterdir()] == ["failed-2.json"]


def test_replay_without_folder_is_a_no_op(tmp_path):
    assert replay_failed.replay(tmp_path / "missing", "https://ingest.local/items") == 0
