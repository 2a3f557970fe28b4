from __future__ import annotations

from unittest.mock import MagicMock

from coachscrape.pipeline.capture import ResponseCollector, should_capture


def _resp(url, content_type="application/json", body='{"ok": true}', status=200, resource_type="xhr"):
    r = MagicMock()
    r.url = url
    r.headers = {"content-type": content_type}
    r.status = status
    r.request.resource_type = resource_type
    r.text.return_value = body
    return r


def test_should_capture():
    assert should_capture("https://x.org/a", "application/json")
    assert should_capture("https://x.org/api/coaches", "")
    assert should_capture("https://x.org/search?q=hockey", "application/octet-stream")
    assert not should_capture("https://x.org/logo.png", "image/png", "image")
    assert not should_capture("https://x.org/app.css", "text/css")
    assert not should_capture("https://x.org/app.js", "application/javascript", "script")


def test_collects_and_drains_matching_responses():
    collector = ResponseCollector()
    collector._on_response(_resp("https://x.org/api/coaches", body='{"coaches": []}'))
    collector._on_response(_resp("https://x.org/font.woff2", "font/woff2", resource_type="font"))
    collector._on_response(_resp("https://x.org/api/coaches"))  # duplicate URL
    out = collector.drain()
    assert [(r.url, r.body, r.status) for r in out] == [("https://x.org/api/coaches", '{"coaches": []}', 200)]
    assert out[0].content_type == "application/json"
    assert collector.drain() == []
    assert len(collector.captured) == 1


def test_body_read_failures_are_skipped():
    collector = ResponseCollector()
    bad = _resp("https://x.org/api/redirect")
    bad.text.side_effect = Exception("Response body is unavailable for redirect responses")
    collector._on_response(bad)
    collector._on_response(_resp("https://x.org/api/ok"))
    assert [r.url for r in collector.drain()] == ["https://x.org/api/ok"]


def test_count_and_size_bounds():
    collector = ResponseCollector(max_responses=2, max_body_bytes=5)
    for i in range(4):
        collector._on_response(_resp(f"https://x.org/api/{i}", body="0123456789"))
    out = collector.drain()
    assert len(out) == 2
    assert all(r.body == "01234" for r in out)


def test_response_cap_is_per_page():
    collector = ResponseCollector(max_responses=5)
    collector.begin_page()
    for i in range(7):
        collector._on_response(_resp(f"https://x.org/api/widgets/{i}"))
    assert len(collector.drain()) == 5

    collector.begin_page()
    collector._on_response(_resp("https://x.org/api/GetPointsFromSearch", body='{"points": []}'))
    assert [r.url for r in collector.drain()] == ["https://x.org/api/GetPointsFromSearch"]
    assert len(collector.captured) == 6


def test_script_bundles_do_not_use_the_budget():
    collector = ResponseCollector(max_responses=5)
    collector.begin_page()
    for i in range(5):
        collector._on_response(_resp(f"https://x.org/static/chunk{i}.js", "application/javascript", resource_type="script"))
    collector._on_response(_resp("https://x.org/api/GetPointsFromSearch"))
    assert [r.url for r in collector.drain()] == ["https://x.org/api/GetPointsFromSearch"]


def test_time_window_closes_capture():
    collector = ResponseCollector(window_s=0.0)
    collector.begin_page()
    collector._page_started -= 1.0
    collector._on_response(_resp("https://x.org/api/late"))
    assert collector.drain() == []


class _ClosedResponse:
    @property
    def url(self):
        raise RuntimeError("page closed")


def test_listener_swallows_broken_events():
    collector = ResponseCollector()
    collector._on_response(_ClosedResponse())
    assert collector.drain() == []


def test_attach_registers_listener():
    context = MagicMock()
    collector = ResponseCollector()
    collector.attach(context)
    context.on.assert_called_once_with("response", collector._on_response)
