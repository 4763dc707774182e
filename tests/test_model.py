import io
import threading
import time
from email.message import Message
from unittest.mock import MagicMock
from urllib.error import HTTPError, URLError

import pytest

from fipe.codes import NoValidCodesError
from fipe.model import FipeLookupModel, HttpResponse, LookupResult, RemoteLookupError, map_with_limit

PRICE_PAYLOAD = (
    '[{"valor": "R$ 10.000,00", "marca": "Fiat", "modelo": "Uno", '
    '"anoModelo": 2010, "combustivel": "Gasolina", "mesReferencia": "maio de 2024"}]'
)


def _ok(body=PRICE_PAYLOAD):
    return HttpResponse(status=200, body=body)


def test_lookup_builds_url_and_parses_payload():
    http_get = MagicMock(return_value=_ok())
    model = FipeLookupModel(base_url="https://example.com/fipe/", timeout=3.5, http_get=http_get)

    result = model.lookup("001004-9")

    http_get.assert_called_once_with("https://example.com/fipe/001004-9", 3.5)
    assert result.ok is True
    assert result.data[0]["marca"] == "Fiat"
    assert result.error is None


def test_lookup_escapes_code_in_url():
    http_get = MagicMock(return_value=_ok("{}"))
    model = FipeLookupModel(base_url="https://example.com", http_get=http_get)

    model.lookup("a/b c")

    http_get.assert_called_once_with("https://example.com/a%2Fb%20c", model.timeout)


@pytest.mark.parametrize(
    "response,status,error",
    [
        (HttpResponse(status=404, body="  Codigo nao encontrado \n"), 404, "Codigo nao encontrado"),
        (HttpResponse(status=500, body="   "), 500, "FIPE lookup failed"),
    ],
)
def test_lookup_captures_upstream_errors(response, status, error):
    model = FipeLookupModel(http_get=MagicMock(return_value=response))

    result = model.lookup("001004-9")

    assert result == LookupResult(code="001004-9", ok=False, status=status, error=error)


def test_lookup_captures_transport_errors():
    model = FipeLookupModel(http_get=MagicMock(side_effect=RemoteLookupError("connection refused")))

    result = model.lookup("001004-9")

    assert result.ok is False
    assert result.status == 0
    assert result.error == "connection refused"
    assert result.data is None


def test_lookup_captures_invalid_json():
    model = FipeLookupModel(http_get=MagicMock(return_value=_ok("<html>oops</html>")))

    result = model.lookup("001004-9")

    assert result.ok is False
    assert result.status == 0
    assert result.error.startswith("Failed to decode JSON payload")


def test_fetch_all_preserves_input_order_when_later_lookups_finish_first():
    codes = [f"00000{i}-0" for i in range(5)]

    def http_get(url, timeout):
        index = int(url.rsplit("/", 1)[-1][5])
        time.sleep(0.02 * (len(codes) - index))
        return _ok(f'{{"index": {index}}}')

    model = FipeLookupModel(concurrency=5, http_get=http_get)

    results = model.fetch_all(codes)

    assert [result.code for result in results] == codes
    assert [result.data["index"] for result in results] == list(range(5))


def test_fetch_all_isolates_a_single_failure():
    codes = [f"00000{i}-0" for i in range(1, 6)]

    def http_get(url, timeout):
        if url.endswith("000003-0"):
            raise RemoteLookupError("timed out")
        return _ok("{}")

    model = FipeLookupModel(concurrency=2, http_get=http_get)

    results = model.fetch_all(codes)

    assert len(results) == 5
    assert [result.ok for result in results] == [True, True, False, True, True]
    assert results[2].status == 0
    assert results[2].error == "timed out"


def test_fetch_all_respects_concurrency_ceiling():
    lock = threading.Lock()
    active = 0
    peak = 0

    def http_get(url, timeout):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
        return _ok("{}")

    model = FipeLookupModel(concurrency=3, http_get=http_get)

    results = model.fetch_all([f"{i:06d}-0" for i in range(12)])

    assert len(results) == 12
    assert all(result.ok for result in results)
    assert 1 <= peak <= 3


def test_map_with_limit_processes_each_item_once():
    calls = []
    lock = threading.Lock()

    def mapper(item):
        with lock:
            calls.append(item)
        return item * 2

    assert map_with_limit(list(range(20)), 4, mapper) == [item * 2 for item in range(20)]
    assert sorted(calls) == list(range(20))


def test_map_with_limit_reraises_unexpected_errors_after_completion():
    seen = []

    def mapper(item):
        seen.append(item)
        if item == 1:
            raise KeyError("boom")
        return item

    with pytest.raises(KeyError):
        map_with_limit([0, 1, 2, 3], 1, mapper)
    assert seen == [0, 1, 2, 3]


def test_map_with_limit_empty_input():
    mapper = MagicMock()
    assert map_with_limit([], 5, mapper) == []
    mapper.assert_not_called()


def test_batch_lookup_dedupes_before_fetching():
    http_get = MagicMock(return_value=_ok("{}"))
    model = FipeLookupModel(base_url="https://example.com", http_get=http_get)

    results = model.batch_lookup(["000001-0", "000001-0", "garbage", "000002-1"])

    assert [result.code for result in results] == ["000001-0", "000002-1"]
    assert http_get.call_count == 2


def test_batch_lookup_without_valid_codes_makes_no_requests():
    http_get = MagicMock()
    model = FipeLookupModel(http_get=http_get)

    with pytest.raises(NoValidCodesError):
        model.batch_lookup(["garbage"], "12345")
    http_get.assert_not_called()


@pytest.mark.parametrize("kwargs", [{"concurrency": 0}, {"concurrency": -2}, {"timeout": 0}])
def test_model_validates_settings(kwargs):
    with pytest.raises(ValueError):
        FipeLookupModel(**kwargs)


def test_lookup_result_dict_shapes():
    ok = LookupResult.success("001004-9", {"valor": "R$ 1,00"})
    failed = LookupResult.failure("001004-9", 404, "not found")

    assert ok.to_dict() == {"code": "001004-9", "ok": True, "data": {"valor": "R$ 1,00"}}
    assert failed.to_dict() == {"code": "001004-9", "ok": False, "status": 404, "error": "not found"}
    assert LookupResult.from_dict(ok.to_dict()) == ok
    assert LookupResult.from_dict(failed.to_dict()) == failed


def test_fetch_all_isolates_payloads_too_deep_to_decode():
    nested = "[" * 200000 + "]" * 200000

    def http_get(url, timeout):
        if url.endswith("000002-1"):
            return _ok(nested)
        return _ok("{}")

    model = FipeLookupModel(concurrency=3, http_get=http_get)

    results = model.fetch_all(["000001-0", "000002-1", "000003-2"])

    assert len(results) == 3
    assert [result.ok for result in results] == [True, False, True]
    assert results[1].status == 0
    assert results[1].error.startswith("Failed to decode JSON payload")


class _FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.headers = Message()
        self.headers["Content-Type"] = "application/json; charset=utf-8"
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


def test_default_transport_returns_successful_payload(monkeypatch):
    requests = []

    def fake_urlopen(request, timeout):
        requests.append((request, timeout))
        return _FakeResponse(200, '{"marca": "Fiat"}'.encode("utf-8"))

    monkeypatch.setattr("fipe.model.urlopen", fake_urlopen)
    model = FipeLookupModel(base_url="https://example.com/fipe", timeout=4.0)

    result = model.lookup("001004-9")

    assert result == LookupResult.success("001004-9", {"marca": "Fiat"})
    request, timeout = requests[0]
    assert request.full_url == "https://example.com/fipe/001004-9"
    assert request.get_header("Accept") == "application/json"
    assert timeout == 4.0


def test_default_transport_returns_http_errors_as_responses(monkeypatch):
    def fake_urlopen(request, timeout):
        raise HTTPError(request.full_url, 404, "Not Found", Message(), io.BytesIO(b"not found"))

    monkeypatch.setattr("fipe.model.urlopen", fake_urlopen)
    model = FipeLookupModel(base_url="https://example.com/fipe")

    result = model.lookup("001004-9")

    assert result == LookupResult.failure("001004-9", 404, "not found")


@pytest.mark.parametrize(
    "error,message",
    [
        (URLError("refused"), "refused"),
        (TimeoutError("timed out"), "timed out"),
        (ConnectionResetError("connection reset by peer"), "connection reset by peer"),
    ],
)
def test_default_transport_maps_network_errors_to_transport_failures(monkeypatch, error, message):
    def fake_urlopen(request, timeout):
        raise error

    monkeypatch.setattr("fipe.model.urlopen", fake_urlopen)
    model = FipeLookupModel(base_url="https://example.com/fipe")

    result = model.lookup("001004-9")

    assert result == LookupResult.failure("001004-9", 0, message)
