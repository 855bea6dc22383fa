"""Unit tests for batch generation and CSV import."""

import threading
import time

import pytest

from qrgen.batch import BatchCoordinator, requests_from_csv
from qrgen.errors import BatchItemFailure, BatchItemTimeout, InvalidFormat
from qrgen.models import Mode, PayloadRequest
from qrgen.payloads import QRType, UrlPayload, WifiPayload


class SlowService:
    """Stand-in service that records concurrency and honours cancellation."""

    def __init__(self, delay=0.05, hang_on=()):
        self.delay = delay
        self.hang_on = set(hang_on)
        self.lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        self.tokens = []

    def generate(self, request, actor_id, cancel=None):
        with self.lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            self.tokens.append(cancel)
        try:
            if request in self.hang_on:
                cancel.wait(5)
                cancel.raise_if_cancelled()
            time.sleep(self.delay)
            return f"result:{request}"
        finally:
            with self.lock:
                self.in_flight -= 1


def _url(n):
    return PayloadRequest(QRType.URL, UrlPayload(f"example.com/{n}"))


def test_partial_failure_keeps_index_association(service):
    """Five requests, the third invalid: four succeed, one fails, all matched."""
    requests = [_url(0), _url(1), PayloadRequest(QRType.WIFI, WifiPayload(ssid="")), _url(3), _url(4)]
    outcome = BatchCoordinator(service).generate_batch(requests, "user-1", max_concurrency=2)

    assert [s.index for s in outcome.successful] == [0, 1, 3, 4]
    for s in outcome.successful:
        assert s.request is requests[s.index]
        assert s.result.image_url.endswith(f"{s.result.id}.png")
    assert len({s.result.id for s in outcome.successful}) == 4

    [failure] = outcome.failed
    assert failure.index == 2
    assert failure.request is requests[2]
    assert isinstance(failure.error, BatchItemFailure)
    assert "ssid is required" in failure.reason
    assert outcome.total == 5


def test_concurrency_is_bounded():
    svc = SlowService()
    outcome = BatchCoordinator(svc).generate_batch(list(range(7)), "u", max_concurrency=3)
    assert len(outcome.successful) == 7
    assert 1 <= svc.peak <= 3
    assert [s.result for s in outcome.successful] == [f"result:{i}" for i in range(7)]


def test_timeout_cancels_stragglers_only():
    svc = SlowService(delay=0.0, hang_on={"slow"})
    outcome = BatchCoordinator(svc).generate_batch(["fast", "slow", "fast2"], "u", max_concurrency=3, timeout=0.3)
    assert [s.index for s in outcome.successful] == [0, 2]
    [failure] = outcome.failed
    assert failure.index == 1
    assert isinstance(failure.error, BatchItemTimeout)
    assert failure.error.retryable
    assert failure.reason == "Generation timeout after 0.3s"
    assert all(t is not None for t in svc.tokens)
    assert sum(t.cancelled for t in svc.tokens) == 1


def test_later_windows_run_after_a_timeout():
    svc = SlowService(delay=0.0, hang_on={"slow"})
    outcome = BatchCoordinator(svc).generate_batch(["slow", "a", "b", "c"], "u", max_concurrency=2, timeout=0.2)
    assert [s.index for s in outcome.successful] == [1, 2, 3]
    assert [f.index for f in outcome.failed] == [0]


def test_raw_dicts_fail_individually(service):
    outcome = BatchCoordinator(service).generate_batch(
        [{"type": "url", "data": "example.com"}, {"type": "fax", "data": {}}], "u",
    )
    assert [s.index for s in outcome.successful] == [0]
    assert "Unsupported QR code type" in outcome.failed[0].reason


def test_empty_batch(service):
    outcome = BatchCoordinator(service).generate_batch([], "u")
    assert outcome.total == 0


@pytest.mark.parametrize("kwargs", [{"max_concurrency": 0}, {"timeout": 0}, {"timeout": -1.0}])
def test_invalid_arguments(service, kwargs):
    with pytest.raises(ValueError):
        BatchCoordinator(service).generate_batch([_url(0)], "u", **kwargs)


def test_outcome_to_dict(service):
    outcome = BatchCoordinator(service).generate_batch([_url(0), PayloadRequest(QRType.URL, UrlPayload(""))], "u")
    doc = outcome.to_dict()
    assert doc["total"] == 2
    assert doc["successful"][0]["index"] == 0
    assert doc["failed"][0] == {"index": 1, "error": "url is required", "code": "batch_item_failure",
                                "retryable": False}


CSV = '''name,type,data,mode,tags
Site,url,"{""url"": ""example.com""}",,web;promo
Guest WiFi,wifi,"{""ssid"": ""Guest"", ""password"": ""welcome1""}",dynamic,
'''


def test_requests_from_csv():
    requests = requests_from_csv(CSV)
    assert [r.type for r in requests] == [QRType.URL, QRType.WIFI]
    assert requests[0].name == "Site"
    assert requests[0].tags == ("web", "promo")
    assert requests[0].mode is Mode.STATIC
    assert requests[1].mode is Mode.DYNAMIC
    assert requests[1].data.ssid == "Guest"


def test_csv_missing_columns():
    with pytest.raises(InvalidFormat, match="data"):
        requests_from_csv("name,type\nx,url\n")


def test_csv_bad_json_names_the_row():
    text = 'name,type,data\nok,url,"{""url"": ""example.com""}"\nbad,url,{not json}\n'
    with pytest.raises(InvalidFormat, match="row 3"):
        requests_from_csv(text)


def test_csv_bad_type_names_the_row():
    with pytest.raises(InvalidFormat, match="row 2"):
        requests_from_csv('name,type,data\nx,fax,"{}"\n')


def test_csv_row_limit():
    rows = "".join(f'r{i},text,"{{""text"": ""{i}""}}"\n' for i in range(101))
    with pytest.raises(InvalidFormat, match="maximum is 100"):
        requests_from_csv("name,type,data\n" + rows)
