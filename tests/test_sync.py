import pytest

from movidesk_backup import sync, upsert
from movidesk_backup.checkpoint import CheckpointFile
from movidesk_backup.errors import TicketSourceError
from movidesk_backup.sync import SyncPhase, run_sync
from movidesk_backup.throttle import FixedWindowThrottle


class FakeClient:
    """Remote source serving canned payloads; records every call in `events`."""

    def __init__(self, payloads, current, past=(), events=None, fail=()):
        self.payloads = payloads
        self.current = list(current)
        self.past = list(past)
        self.events = events if events is not None else []
        self.fail = set(fail)
        self.list_error = None

    def list_ticket_ids(self, past=False):
        if self.list_error:
            raise self.list_error
        return list(self.past if past else self.current)

    def get_ticket(self, ticket_id, throttle=None):
        if throttle is not None:
            throttle.wait()
            throttle.record()
        self.events.append(("fetch", ticket_id))
        if ticket_id in self.fail:
            raise TicketSourceError(f"GET ticket {ticket_id} failed [500]", status_code=500)
        return self.payloads[ticket_id]


@pytest.fixture
def checkpoint(tmp_path):
    return CheckpointFile(tmp_path / "ticket_ids.txt")


@pytest.fixture
def no_wait():
    return FixedWindowThrottle(limit=10, window=60, sleep=lambda s: None)


def _payloads(make_ticket, ids):
    return {i: make_ticket(i) for i in ids}


def test_full_run_stores_everything_and_empties_checkpoint(fake_conn, checkpoint, no_wait, make_ticket):
    client = FakeClient(_payloads(make_ticket, ["1", "2", "3"]), current=["1", "2"], past=["3", "2"])

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.phase is SyncPhase.DONE
    assert report.discovered == 4
    assert report.pending == 3
    assert report.stored == 3
    assert report.failed == []
    assert set(fake_conn.tickets) == {"1", "2", "3"}
    assert checkpoint.read() == []
    assert [e for e in client.events if e[1] == "2"] == [("fetch", "2")]


def test_second_run_ingests_nothing(fake_conn, checkpoint, no_wait, make_ticket):
    client = FakeClient(_payloads(make_ticket, ["1", "2"]), current=["1", "2"])
    run_sync(fake_conn, client, checkpoint, no_wait)
    rows_after_first = dict(fake_conn.tickets)
    client.events.clear()

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.pending == 0
    assert report.already_stored == 2
    assert client.events == []
    assert fake_conn.tickets == rows_after_first


def test_rate_limit_splits_25_tickets_into_three_bursts(fake_conn, checkpoint, make_ticket):
    ids = [str(i) for i in range(1, 26)]
    events = []
    client = FakeClient(_payloads(make_ticket, ids), current=ids, events=events)
    throttle = FixedWindowThrottle(limit=10, window=60, sleep=lambda s: events.append(("sleep", s)))

    run_sync(fake_conn, client, checkpoint, throttle)

    bursts, current = [], 0
    for kind, _ in events:
        if kind == "sleep":
            bursts.append(current)
            current = 0
        else:
            current += 1
    bursts.append(current)
    assert bursts == [10, 10, 5]
    assert [e for e in events if e[0] == "sleep"] == [("sleep", 60), ("sleep", 60)]


def test_fetch_failure_is_skipped_and_kept_in_checkpoint(fake_conn, checkpoint, no_wait, make_ticket):
    client = FakeClient(_payloads(make_ticket, ["1", "2", "3"]), current=["1", "2", "3"], fail={"2"})

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.stored == 2
    assert report.failed == ["2"]
    assert checkpoint.read() == ["2"]
    assert set(fake_conn.tickets) == {"1", "3"}


def test_malformed_payload_is_skipped(fake_conn, checkpoint, no_wait, make_ticket):
    payloads = _payloads(make_ticket, ["1", "2"])
    del payloads["1"]["subject"]
    client = FakeClient(payloads, current=["1", "2"])

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.failed == ["1"]
    assert checkpoint.read() == ["1"]
    assert "2" in fake_conn.tickets


def test_persist_failure_keeps_checkpoint_entry(fake_conn, checkpoint, no_wait, make_ticket):
    fake_conn.fail_ticket_ids.add("1")
    client = FakeClient(_payloads(make_ticket, ["1", "2"]), current=["1", "2"])

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.failed == ["1"]
    assert checkpoint.read() == ["1"]
    assert "2" in fake_conn.tickets


def test_discovery_failure_aborts_before_checkpoint(fake_conn, checkpoint, no_wait, make_ticket):
    client = FakeClient({}, current=["1"])
    client.list_error = TicketSourceError("GET /tickets failed [503]", status_code=503)

    with pytest.raises(TicketSourceError):
        run_sync(fake_conn, client, checkpoint, no_wait)
    assert not checkpoint.exists()


def test_dry_run_writes_checkpoint_only(fake_conn, checkpoint, no_wait, make_ticket):
    client = FakeClient(_payloads(make_ticket, ["1", "2"]), current=["1", "2"])
    fake_conn.tickets["1"] = {}

    report = run_sync(fake_conn, client, checkpoint, no_wait, dry_run=True)

    assert report.phase is SyncPhase.DONE
    assert checkpoint.read() == ["2"]
    assert client.events == []


def test_crash_between_commit_and_checkpoint_removal(fake_conn, checkpoint, no_wait, make_ticket, monkeypatch):
    client = FakeClient(_payloads(make_ticket, ["1", "2", "3"]), current=["1", "2", "3"])
    real_remove = checkpoint.remove

    def crash_on_two(ticket_id):
        if ticket_id == "2":
            raise KeyboardInterrupt("killed")
        return real_remove(ticket_id)

    monkeypatch.setattr(checkpoint, "remove", crash_on_two)
    with pytest.raises(KeyboardInterrupt):
        run_sync(fake_conn, client, checkpoint, no_wait)

    # ticket 2 committed, but still listed as pending
    assert "2" in fake_conn.tickets
    assert checkpoint.read() == ["2", "3"]
    actions_before = dict(fake_conn.actions)

    # re-attempting 2 directly is harmless
    assert sync.sync_one(fake_conn, client, no_wait, "2") is True
    assert fake_conn.actions == actions_before

    monkeypatch.setattr(checkpoint, "remove", real_remove)
    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.pending == 1  # only 3; 2 is already stored
    assert set(fake_conn.tickets) == {"1", "2", "3"}
    assert checkpoint.read() == []


def test_action_for_missing_ticket_does_not_abort_run(fake_conn, checkpoint, no_wait, make_ticket, monkeypatch):
    client = FakeClient(_payloads(make_ticket, ["1", "2"]), current=["1", "2"])
    real_insert = upsert.insert_ticket

    def lose_ticket_one(conn, ticket):
        ok = real_insert(conn, ticket)
        if ticket.id == "1":
            conn.tickets.pop("1")  # row vanished before its actions were written
        return ok

    monkeypatch.setattr(upsert, "insert_ticket", lose_ticket_one)

    report = run_sync(fake_conn, client, checkpoint, no_wait)

    assert report.phase is SyncPhase.DONE
    assert not any(key[1] == "1" for key in fake_conn.actions)
    assert {(1, "2"), (2, "2")} <= set(fake_conn.actions)


class TestMain:
    def test_connection_failure_exits_nonzero(self, monkeypatch, tmp_path):
        import psycopg

        def refuse(*a, **k):
            raise psycopg.OperationalError("connection refused")

        monkeypatch.setattr(sync, "get_db", refuse)
        assert sync.main(["--checkpoint", str(tmp_path / "ids.txt")]) == 1

    def test_runs_with_injected_collaborators(self, monkeypatch, tmp_path, fake_conn, make_ticket):
        client = FakeClient(_payloads(make_ticket, ["1"]), current=["1"])
        monkeypatch.setattr(sync, "get_db", lambda: fake_conn)
        monkeypatch.setattr(sync, "MovideskClient", lambda token: client)

        assert sync.main(["--checkpoint", str(tmp_path / "ids.txt")]) == 0
        assert "1" in fake_conn.tickets

    def test_discovery_failure_exits_nonzero(self, monkeypatch, tmp_path, fake_conn):
        client = FakeClient({}, current=[])
        client.list_error = TicketSourceError("GET /tickets failed [401]", status_code=401)
        monkeypatch.setattr(sync, "get_db", lambda: fake_conn)
        monkeypatch.setattr(sync, "MovideskClient", lambda token: client)

        assert sync.main(["--checkpoint", str(tmp_path / "ids.txt")]) == 1
