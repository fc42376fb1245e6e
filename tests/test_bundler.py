"""
Tests for the frame bundler and contiguity stages.
"""

import pytest

from models.bundle import BundledAllCamsOneFrame
from models.errors import FatalPipelineError
from pipeline.cameras import ConnectedCamerasManager
from pipeline.stages import EOF, SENTINEL_FRAME, FrameBundler, bundle_frames, make_contiguous


@pytest.fixture
def manager():
    return ConnectedCamerasManager(["cam1", "cam2"])


class TestConnectedCamerasManager:
    def test_numbers_in_registration_order(self):
        """Camera numbers are assigned once, in registration order."""
        manager = ConnectedCamerasManager(["b", "a"])

        assert manager.cam_num("b") == 0
        assert manager.cam_num("a") == 1
        assert manager.register("b") == 0
        assert len(manager) == 2

    def test_remove(self, manager):
        manager.remove("cam1")

        assert manager.cam_names() == ["cam2"]
        assert manager.cam_num("cam1") is None

    def test_cam_info_rows(self, manager):
        rows = manager.cam_info_rows()

        assert [(r.camn, r.cam_id) for r in rows] == [(0, "cam1"), (1, "cam2")]


class TestFrameBundler:
    def test_emits_when_all_cameras_reported(self, manager, make_fdp):
        """A bundle is emitted as soon as every connected camera contributed."""
        bundler = FrameBundler(manager)

        assert list(bundler.push(make_fdp("cam1", 0, 1))) == []
        emitted = list(bundler.push(make_fdp("cam2", 1, 1)))

        assert [b.frame() for b in emitted] == [1]
        assert emitted[0].cam_names() == ["cam1", "cam2"]

    def test_newer_frame_emits_pending(self, manager, make_fdp):
        """A record for a later frame closes an incomplete pending bundle."""
        bundler = FrameBundler(manager)
        list(bundler.push(make_fdp("cam1", 0, 1)))

        emitted = list(bundler.push(make_fdp("cam1", 0, 2)))

        assert [b.frame() for b in emitted] == [1]
        assert emitted[0].cam_names() == ["cam1"]

    def test_late_record_dropped(self, manager, make_fdp):
        """Records for an already emitted frame are dropped and counted."""
        bundler = FrameBundler(manager)
        list(bundler.push(make_fdp("cam1", 0, 1)))
        list(bundler.push(make_fdp("cam1", 0, 2)))

        assert list(bundler.push(make_fdp("cam2", 1, 1))) == []
        assert bundler.num_dropped == 1

    def test_duplicate_camera_dropped(self, manager, make_fdp):
        bundler = FrameBundler(manager)
        list(bundler.push(make_fdp("cam1", 0, 1, [(1, 1)])))

        assert list(bundler.push(make_fdp("cam1", 0, 1, [(2, 2)]))) == []
        assert bundler.num_dropped == 1
        bundle = list(bundler.flush())[0]
        assert bundle.num_points() == 1

    def test_flush_at_end_of_stream(self, manager, make_fdp):
        """The pending bundle is emitted at end of stream."""
        stream = [make_fdp("cam1", 0, 5), EOF, make_fdp("cam1", 0, 6)]

        bundles = list(bundle_frames(stream, manager))

        assert [b.frame() for b in bundles] == [5]

    def test_exhausted_stream_flushes(self, manager, make_fdp):
        stream = [make_fdp("cam1", 0, 5), make_fdp("cam2", 1, 5), make_fdp("cam1", 0, 6)]

        bundles = list(bundle_frames(stream, manager))

        assert [b.frame() for b in bundles] == [5, 6]


class TestMakeContiguous:
    def test_fills_gaps(self):
        """Skipped frames are filled with empty bundles."""
        bundles = [BundledAllCamsOneFrame.empty(f) for f in (1, 2, 4, 5)]

        out = list(make_contiguous(bundles))

        assert [b.frame() for b in out] == [1, 2, 3, 4, 5]
        assert out[2].inner == []

    def test_non_advancing_frames_pass_through(self):
        """Frames that do not advance are passed on for the ordering check."""
        bundles = [BundledAllCamsOneFrame.empty(f) for f in (3, 3, 2)]

        assert [b.frame() for b in make_contiguous(bundles)] == [3, 3, 2]

    def test_sentinel_frame_is_fatal(self):
        bundles = [BundledAllCamsOneFrame.empty(1), BundledAllCamsOneFrame.empty(SENTINEL_FRAME)]

        with pytest.raises(FatalPipelineError) as exc_info:
            list(make_contiguous(bundles))

        assert exc_info.value.frame == SENTINEL_FRAME
