"""Tests for HAR recording and replay."""

import json

import pytest

from route_mocker.core.events.event_bus import NetworkEvent, NetworkEventType
from route_mocker.core.events.recorder import NetworkRecorder
from route_mocker.core.interception.request_context import RequestContext, ResolutionKind
from route_mocker.core.models.http import AbortReason, ResponseDescriptor


def finished_event(request, status=200, body=b"", content_type="application/json", duration_ms=12.5,
                   headers=None):
    return NetworkEvent(
        type=NetworkEventType.REQUEST_FINISHED,
        request=request,
        page_id="page-1",
        response=ResponseDescriptor(
            status=status, headers={"Content-Type": content_type, **(headers or {})}, body=body, status_text="OK"
        ),
        duration_ms=duration_ms,
        resolution="fulfill",
    )


def failed_event(request, reason=AbortReason.TIMED_OUT):
    return NetworkEvent(
        type=NetworkEventType.REQUEST_FAILED,
        request=request,
        page_id="page-1",
        failure=reason,
        duration_ms=3.0,
        resolution="continue",
    )


@pytest.fixture
async def recorder(event_bus):
    network_recorder = NetworkRecorder(max_body_size=64)
    network_recorder.attach(event_bus)
    yield network_recorder
    network_recorder.detach()


async def record(event_bus, *events):
    for event in events:
        event_bus.publish(event)
    await event_bus.flush()


class TestRecording:
    """Collecting exchanges from the event bus."""

    @pytest.mark.asyncio
    async def test_records_finished_and_failed(self, event_bus, recorder, make_request):
        request = make_request()
        await record(
            event_bus,
            NetworkEvent(type=NetworkEventType.REQUEST_STARTED, request=request),
            finished_event(request, body=b"[]"),
            failed_event(make_request(path="/api/slow")),
        )

        exchanges = recorder.exchanges
        assert len(exchanges) == 2
        assert exchanges[0].response.body == b"[]"
        assert exchanges[0].resolution == "fulfill"
        assert exchanges[1].failure is AbortReason.TIMED_OUT
        assert exchanges[1].response is None

    @pytest.mark.asyncio
    async def test_large_bodies_are_truncated(self, event_bus, recorder, make_request):
        await record(event_bus, finished_event(make_request(), body=b"x" * 100))

        exchange = recorder.exchanges[0]
        assert exchange.body_truncated
        assert exchange.response.body == b""
        assert exchange.response.status == 200

    @pytest.mark.asyncio
    async def test_truncated_body_drops_content_length(self, event_bus, recorder, make_request):
        await record(event_bus, finished_event(make_request(), body=b"x" * 100, headers={"Content-Length": "100"}))

        response = recorder.exchanges[0].response
        assert "content-length" not in response.headers
        assert response.headers.get("content-type") == "application/json"

    @pytest.mark.asyncio
    async def test_detach_and_clear(self, event_bus, recorder, make_request):
        await record(event_bus, finished_event(make_request()))
        recorder.detach()
        await record(event_bus, finished_event(make_request()))

        assert len(recorder.exchanges) == 1
        recorder.clear()
        assert recorder.exchanges == []


class TestHar:
    """HAR export and import."""

    @pytest.mark.asyncio
    async def test_har_structure(self, event_bus, recorder, make_request):
        request = make_request("POST", "/api/items?draft=1", body={"name": "x"})
        await record(event_bus, finished_event(request, status=201, body=b'{"id":1}'))

        har = recorder.to_har()

        assert har["log"]["version"] == "1.2"
        assert har["log"]["creator"]["name"] == "playwright-route-mocker"
        entry = har["log"]["entries"][0]
        assert entry["startedDateTime"].endswith("Z")
        assert entry["time"] == 12.5
        assert entry["_resolution"] == "fulfill"
        assert entry["request"]["method"] == "POST"
        assert entry["request"]["queryString"] == [{"name": "draft", "value": "1"}]
        assert entry["request"]["postData"] == {"mimeType": "application/json", "text": '{"name":"x"}'}
        assert entry["response"]["status"] == 201
        assert entry["response"]["content"] == {
            "size": 8, "mimeType": "application/json", "text": '{"id":1}'
        }

    @pytest.mark.asyncio
    async def test_failed_entry(self, event_bus, recorder, make_request):
        await record(event_bus, failed_event(make_request(), AbortReason.CONNECTION_REFUSED))

        response = recorder.to_har()["log"]["entries"][0]["response"]

        assert response["status"] == 0
        assert response["_failure"] == "connection-refused"

    @pytest.mark.asyncio
    async def test_export_and_load_round_trip(self, event_bus, recorder, make_request, temp_test_dir):
        binary = b"\x89PNG\r\n\x00\xff"
        await record(
            event_bus,
            finished_event(make_request(path="/api/items"), body=b'{"items":[]}'),
            finished_event(make_request(path="/logo.png"), body=binary, content_type="image/png"),
            failed_event(make_request(path="/api/slow")),
            finished_event(make_request(path="/big"), body=b"y" * 100, content_type="text/plain"),
        )

        path = recorder.export_har(temp_test_dir / "out" / "session.har")
        with open(path, encoding="utf-8") as f:
            assert json.load(f)["log"]["entries"][1]["response"]["content"]["encoding"] == "base64"

        loaded = NetworkRecorder.load_har(path).exchanges

        assert [e.request.url for e in loaded] == [e.request.url for e in recorder.exchanges]
        assert loaded[0].response.json() == {"items": []}
        assert loaded[1].response.body == binary
        assert loaded[2].failure is AbortReason.TIMED_OUT
        assert loaded[3].body_truncated
        assert loaded[0].request.timestamp == pytest.approx(recorder.exchanges[0].request.timestamp, abs=1e-3)

    def test_load_rejects_non_har(self, temp_test_dir):
        path = temp_test_dir / "not.har"
        path.write_text('{"entries": []}', encoding="utf-8")

        with pytest.raises(ValueError):
            NetworkRecorder.load_har(path)


class TestReplay:
    """Serving recorded responses."""

    @pytest.fixture
    async def replay_recorder(self, event_bus, recorder, make_request):
        await record(
            event_bus,
            finished_event(make_request(path="/api/items"), body=b'"first"'),
            finished_event(make_request(path="/api/items"), body=b'"second"'),
            failed_event(make_request(path="/api/down"), AbortReason.CONNECTION_RESET),
        )
        return recorder

    def resolve(self, handler, request, transport):
        context = RequestContext(request, transport)
        handler(context)
        return context.resolution

    def test_responses_are_served_in_order_then_repeated(self, replay_recorder, make_request, fake_transport):
        handler = replay_recorder.replay_handler()

        bodies = [
            self.resolve(handler, make_request(path="/api/items"), fake_transport).response.json()
            for _ in range(3)
        ]

        assert bodies == ["first", "second", "second"]

    def test_url_fragment_and_host_case_are_ignored(self, replay_recorder, make_request, fake_transport):
        handler = replay_recorder.replay_handler()

        resolution = self.resolve(handler, make_request(path="https://APP.test/api/items#top"), fake_transport)

        assert resolution.kind is ResolutionKind.FULFILL

    def test_recorded_failure_is_aborted(self, replay_recorder, make_request, fake_transport):
        resolution = self.resolve(
            replay_recorder.replay_handler(), make_request(path="/api/down"), fake_transport
        )

        assert resolution.kind is ResolutionKind.ABORT
        assert resolution.abort_reason is AbortReason.CONNECTION_RESET

    def test_unknown_request_continues(self, replay_recorder, make_request, fake_transport):
        resolution = self.resolve(
            replay_recorder.replay_handler(), make_request("POST", "/api/items"), fake_transport
        )

        assert resolution.kind is ResolutionKind.CONTINUE

    def test_unknown_request_strict(self, replay_recorder, make_request, fake_transport):
        resolution = self.resolve(
            replay_recorder.replay_handler(strict=True), make_request(path="/api/other"), fake_transport
        )

        assert resolution.abort_reason is AbortReason.BLOCKED_BY_CLIENT

    def test_stale_content_length_is_not_replayed(self, temp_test_dir, make_request, fake_transport):
        """A HAR entry whose content was left out still lists the original length."""
        path = temp_test_dir / "external.har"
        path.write_text(json.dumps({"log": {"version": "1.2", "entries": [{
            "startedDateTime": "2024-05-01T10:00:00Z",
            "time": 1.0,
            "comment": "body omitted",
            "request": {"method": "GET", "url": "https://app.test/api/items", "headers": []},
            "response": {
                "status": 200,
                "headers": [{"name": "Content-Type", "value": "text/plain"},
                            {"name": "Content-Length", "value": "100"}],
                "content": {"size": 100, "mimeType": "text/plain"},
            },
        }]}}), encoding="utf-8")

        resolution = self.resolve(
            NetworkRecorder.load_har(path).replay_handler(), make_request(), fake_transport
        )

        assert resolution.response.body == b""
        assert "content-length" not in resolution.response.headers

    def test_matching_content_length_is_kept(self, make_request, fake_transport):
        recorder = NetworkRecorder()
        recorder._on_event(finished_event(make_request(), body=b"[1]", headers={"Content-Length": "3"}))

        resolution = self.resolve(recorder.replay_handler(), make_request(), fake_transport)

        assert resolution.response.headers.get("content-length") == "3"
