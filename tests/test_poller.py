import pytest
import requests

from taskledger.client import ClientSettings
from taskledger.client.poller import Poller, is_transient


class _Resp:
    def __init__(self, status_code):
        self.status_code = status_code


def _http_error(status):
    return requests.HTTPError(f"{status}", response=_Resp(status))


class FlakyFetch:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def test_interval_is_clamped():
    assert Poller(lambda: None, interval=5).interval == 20
    assert Poller(lambda: None, interval=90).interval == 30
    assert Poller(lambda: None, interval=25).interval == 25
    assert ClientSettings(poll_interval=1).poll_interval == 20


@pytest.mark.parametrize("exc,expected", [
    (requests.ConnectionError("down"), True),
    (requests.Timeout("slow"), True),
    (_http_error(503), True),
    (_http_error(404), False),
    (ValueError("bad"), False),
])
def test_is_transient(exc, expected):
    assert is_transient(exc) is expected


def test_transient_failures_keep_last_snapshot():
    seen = []
    fetch = FlakyFetch({"items": [1]}, requests.ConnectionError("down"), _http_error(502), {"items": [2]})
    poller = Poller(fetch, on_update=seen.append)

    assert poller.tick() == {"items": [1]}
    assert poller.tick() == {"items": [1]}
    assert poller.tick() == {"items": [1]}
    assert poller.consecutive_failures == 2

    assert poller.tick() == {"items": [2]}
    assert poller.consecutive_failures == 0
    assert seen == [{"items": [1]}, {"items": [2]}]


def test_other_errors_propagate():
    poller = Poller(FlakyFetch(KeyError("boom")))
    with pytest.raises(KeyError):
        poller.tick()


def test_run_stops_after_max_ticks():
    fetch = FlakyFetch(1, 2)
    poller = Poller(fetch)
    # max_ticks ends the loop before it waits out the interval
    poller.run(max_ticks=1)
    assert fetch.calls == 1
    assert poller.snapshot == 1


def test_background_thread_reports_fatal_error(caplog):
    poller = Poller(FlakyFetch(KeyError("boom")))

    with caplog.at_level("ERROR", logger="taskledger.client.poller"):
        thread = poller.start()
        thread.join(timeout=5)

    assert not thread.is_alive()
    assert isinstance(poller.last_error, KeyError)
    assert "Poller stopped" in caplog.text
