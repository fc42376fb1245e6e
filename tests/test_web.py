"""
Tests for the live model server and its web routes.
"""

import json
from types import SimpleNamespace

import numpy as np

from models.detection import TimeDataPassthrough
from models.events import Birth, Calibration, Death, EndOfFrame, Update
from models.track import LiveObject
from web.app import create_app
from web.routes.api import build_status, format_sse, status, stream_events
from web.state import ModelServer


def _row(obj_id, frame):
    return LiveObject(obj_id=obj_id, state=np.zeros(6), covariance=np.eye(6)).to_row(frame, 1.5)


class TestModelServer:
    def test_tracks_live_objects(self):
        """Births and updates add objects, deaths remove them."""
        server = ModelServer()
        server.handle(Birth(_row(0, 1)), TimeDataPassthrough(1, 1.5))
        server.handle(Birth(_row(1, 1)), TimeDataPassthrough(1, 1.5))
        server.handle(EndOfFrame(1), TimeDataPassthrough(1, 1.5))
        server.handle(Update(_row(1, 2)), TimeDataPassthrough(2, None))
        server.handle(Death(0), TimeDataPassthrough(2, None))

        summary = server.status()
        assert summary["live_obj_ids"] == [1]
        assert summary["last_frame"] == 1
        assert summary["events_received"] == 5
        assert summary["running"] is False

    def test_handle_adds_frame_and_timestamp(self):
        server = ModelServer()

        msg = server.handle(Death(3), TimeDataPassthrough(9, 2.0))

        assert msg == {"type": "death", "obj_id": 3, "frame": 9, "trigger_timestamp": 2.0}

    def test_subscriber_receives_calibration_first(self):
        """A late subscriber is sent the calibration in effect."""
        server = ModelServer()
        server.handle(Calibration({"cameras": []}), TimeDataPassthrough(0, None))

        q = server.subscribe()
        server.handle(EndOfFrame(0), TimeDataPassthrough(0, None))

        assert q.get_nowait()["type"] == "calibration"
        assert q.get_nowait() == {"type": "end_of_frame", "frame": 0, "trigger_timestamp": None}

    def test_full_subscriber_misses_events(self):
        server = ModelServer()
        q = server.subscribe()
        for _ in range(q.maxsize):
            q.put_nowait({})

        server.handle(EndOfFrame(0), TimeDataPassthrough(0, None))

        assert server.status()["events_dropped"] == 1

    def test_consumer_thread(self):
        """Events put by the tracking loop are handled by the consumer thread."""
        server = ModelServer()
        server.start()
        q = server.subscribe()
        server.put((EndOfFrame(4), TimeDataPassthrough(4, None)))

        assert q.get(timeout=5.0)["frame"] == 4
        assert server.status()["running"] is True
        server.stop()
        assert server.status()["running"] is False


class TestRoutes:
    def test_format_sse(self):
        msg = {"type": "death", "obj_id": 2}

        text = format_sse(msg)

        assert text.startswith("event: death\ndata: ")
        assert text.endswith("\n\n")
        assert json.loads(text.split("data: ", 1)[1]) == msg

    def test_build_status(self):
        server = ModelServer()
        server.handle(Birth(_row(5, 0)), TimeDataPassthrough(0, None))

        response = build_status(server)

        assert response.num_live_objects == 1
        assert response.live_obj_ids == [5]
        assert response.has_calibration is False

    def test_status_route(self):
        server = ModelServer()
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(model_server=server)))

        assert status(request).num_subscribers == 0

    def test_stream_events_keepalive_and_unsubscribe(self):
        """Idle streams send keep-alives; closing the stream unsubscribes."""
        server = ModelServer()
        gen = stream_events(server, keepalive=0.01)

        assert next(gen) == ": keepalive\n\n"
        assert server.status()["num_subscribers"] == 1

        server.handle(Death(1), TimeDataPassthrough(3, None))
        assert next(gen).startswith("event: death\n")

        gen.close()
        assert server.status()["num_subscribers"] == 0

    def test_app_routes(self):
        app = create_app(ModelServer())

        paths = {route.path for route in app.routes}

        assert "/api/status" in paths
        assert "/events" in paths
        assert isinstance(app.state.model_server, ModelServer)
