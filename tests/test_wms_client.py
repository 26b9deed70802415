from unittest import mock

import pytest
import requests

from mapterm.ingest import FetchError, create_session, fetch_with_retry
from mapterm.ingest.wms_client import (
    NO_FEATURES_MESSAGE,
    FeatureInfoRequest,
    FeatureInfoResult,
    LegendRequest,
    LegendResult,
    MapRequest,
    MapResult,
    MetadataResult,
    qualified_name,
)

from conftest import FakeResponse, drain


def _map_request(**kwargs):
    values = dict(layers="topp:states", styles="", bbox=(-45.0, -22.5, 45.0, 22.5),
                  width=800, height=600)
    values.update(kwargs)
    return MapRequest(**values)


def test_get_map_params():
    params = _map_request(styles="population").params()
    assert params["SERVICE"] == "WMS"
    assert params["VERSION"] == "1.1.1"
    assert params["REQUEST"] == "GetMap"
    assert params["LAYERS"] == "topp:states"
    assert params["STYLES"] == "population"
    assert params["SRS"] == "EPSG:4326"
    assert params["FORMAT"] == "image/png"
    assert params["WIDTH"] == "800" and params["HEIGHT"] == "600"
    assert params["BBOX"] == "-45.000000,-22.500000,45.000000,22.500000"


def test_feature_info_params_carry_pixel_and_query_layers():
    req = FeatureInfoRequest(layers="a,b", bbox=(0, 0, 1, 1), width=100, height=50, x=10, y=20)
    params = req.params()
    assert params["REQUEST"] == "GetFeatureInfo"
    assert params["QUERY_LAYERS"] == "a,b"
    assert params["INFO_FORMAT"] == "text/plain"
    assert (params["X"], params["Y"]) == ("10", "20")


def test_legend_params_only_send_style_when_set():
    assert "STYLE" not in LegendRequest("topp:states").params()
    params = LegendRequest("topp:states", style="pop").params()
    assert params["STYLE"] == "pop"
    assert (params["WIDTH"], params["HEIGHT"]) == ("20", "20")


def test_qualified_name():
    assert qualified_name("topp", "states") == "topp:states"
    assert qualified_name("", "states") == "states"


def test_map_fetch_posts_result(pipeline, session, events, png_bytes):
    session.handler = lambda url, params: FakeResponse(200, png_bytes)
    pipeline.request_map(3, _map_request())
    (event,) = drain(events)
    assert event == MapResult(3, data=png_bytes)
    assert session.calls[0]["url"] == "http://maps.example/geoserver/wms"
    assert session.calls[0]["timeout"] == 5


def test_map_fetch_http_error_carries_status_and_body(pipeline, session, events):
    session.handler = lambda url, params: FakeResponse(500, b"boom")
    pipeline.request_map(1, _map_request())
    (event,) = drain(events)
    assert event.generation == 1
    assert "500" in event.error and "boom" in event.error


def test_network_error_becomes_event(pipeline, session, events):
    def handler(url, params):
        raise requests.ConnectionError("refused")

    session.handler = handler
    pipeline.request_map(2, _map_request())
    (event,) = drain(events)
    assert "refused" in event.error


def test_unexpected_exception_still_posts_event(pipeline, session, events):
    def handler(url, params):
        raise RuntimeError("bad adapter")

    session.handler = handler
    pipeline.request_map(4, _map_request())
    (event,) = drain(events)
    assert event == MapResult(4, error="bad adapter")


def test_empty_feature_info_is_normalized(pipeline, session, events):
    session.handler = lambda url, params: FakeResponse(200, b"  \n")
    pipeline.request_feature_info(
        7, FeatureInfoRequest("a", (0, 0, 1, 1), 10, 10, 5, 5))
    assert drain(events) == [FeatureInfoResult(7, info=NO_FEATURES_MESSAGE)]


def test_legend_http_error_message(pipeline, session, events):
    session.handler = lambda url, params: FakeResponse(404, b"not found")
    pipeline.request_legend(LegendRequest("topp:states"))
    assert drain(events) == [LegendResult(error="legend request failed: 404")]


def test_metadata_loader_result(pipeline, events):
    pipeline.request_metadata(lambda: {"bounds": None})
    assert drain(events) == [MetadataResult(metadata={"bounds": None})]


def test_fetch_with_retry_retries_timeouts(monkeypatch):
    monkeypatch.setattr("mapterm.ingest.time.sleep", lambda s: None)
    session = mock.Mock()
    ok = FakeResponse(200, b"ok")
    session.get.side_effect = [requests.Timeout("slow"), ok]
    assert fetch_with_retry(session, "http://x", retries=1) is ok
    assert session.get.call_count == 2


def test_fetch_with_retry_gives_up(monkeypatch):
    monkeypatch.setattr("mapterm.ingest.time.sleep", lambda s: None)
    session = mock.Mock()
    session.get.side_effect = requests.Timeout("slow")
    with pytest.raises(FetchError, match="slow"):
        fetch_with_retry(session, "http://x", retries=2)
    assert session.get.call_count == 3


def test_create_session_sets_basic_auth():
    assert create_session("admin", "geoserver").auth == ("admin", "geoserver")
    assert create_session().auth is None
