import numpy as np
import pytest

from roi_state import (
    MAX_SCALE,
    MIN_SCALE,
    AppConfig,
    PlacementMode,
    RegionOfInterest,
    RoiSession,
    SampleMode,
    ViewTransform,
)

from conftest import write_image


@pytest.fixture
def session(image_file):
    session = RoiSession()
    session.open_image(image_file)
    return session


class TestViewTransform:
    def test_canvas_to_image_scaled(self):
        view = ViewTransform(scale=2.0)
        assert view.canvas_to_image(11, 11) == (5, 5)
        assert view.image_to_canvas(5, 5) == (10.0, 10.0)

    def test_canvas_to_image_with_offset(self):
        view = ViewTransform(offset=(10, 20))
        assert view.canvas_to_image(15, 25) == (5, 5)
        assert view.image_to_canvas(5, 5) == (15, 25)

    def test_truncates_toward_zero(self):
        view = ViewTransform()
        assert view.canvas_to_image(-0.5, 3.9) == (0, 3)
        assert view.canvas_to_image_float(-0.5, 3.9) == (-0.5, 3.9)

    def test_zoom_steps(self):
        view = ViewTransform()
        assert view.zoom_in() == pytest.approx(1.1)
        assert view.zoom_out() == pytest.approx(1.0)

    def test_zoom_is_clamped(self):
        view = ViewTransform()
        for _ in range(30):
            view.zoom_in()
        assert view.scale == MAX_SCALE
        for _ in range(60):
            view.zoom_out()
        assert view.scale == MIN_SCALE

    def test_wheel_direction(self):
        view = ViewTransform()
        assert view.zoom_wheel(-120) > 1.0
        view.reset()
        assert view.zoom_wheel(120) < 1.0

    def test_pan_and_reset(self):
        view = ViewTransform(scale=2.0)
        view.pan(5, -3)
        view.pan(1, 1)
        assert view.offset == (6, -2)
        view.reset()
        assert view.scale == 1.0
        assert view.offset == (0.0, 0.0)


class TestRegionOfInterest:
    def test_contains_point_is_half_open(self):
        roi = RegionOfInterest(10, 10, 5, 5)
        assert roi.contains_point(10, 10)
        assert roi.contains_point(14, 14)
        assert not roi.contains_point(15, 10)
        assert not roi.contains_point(10, 15)
        assert not roi.contains_point(9, 12)

    def test_bbox_and_rect(self):
        roi = RegionOfInterest(1, 2, 3, 4)
        assert roi.as_rect() == (1, 2, 3, 4)
        assert roi.to_bbox() == (1, 2, 4, 6)

    def test_to_canvas(self):
        roi = RegionOfInterest(10, 10, 3, 3)
        assert roi.to_canvas(ViewTransform(scale=2.0)) == (20, 20, 26, 26)
        assert roi.to_canvas(ViewTransform(offset=(5, 7))) == (15, 17, 18, 20)

    def test_ids_are_unique(self):
        assert RegionOfInterest(0, 0, 1, 1).region_id != RegionOfInterest(0, 0, 1, 1).region_id


class TestLoading:
    def test_initial_state(self):
        session = RoiSession()
        assert not session.has_image
        assert session.image_size == (0, 0)
        assert session.placement_mode == PlacementMode.SUBSAMPLE
        assert session.sample_mode == SampleMode.RGB
        assert (session.roi_width, session.roi_height) == (16, 16)

    def test_open_image(self, session, image_file):
        assert session.has_image
        assert session.image_path == image_file
        assert session.image_size == (100, 80)
        assert session.mime == "image/png"
        assert session.data_url.startswith("data:image/png;base64,")
        assert session.image_paths == [image_file]
        assert not session.has_previous()
        assert not session.has_next()

    def test_load_resets_rois_and_view(self, session, image_file):
        session.place_subsample(50, 40)
        session.view.zoom_in()
        session.view.pan(10, 10)

        session.load_image(image_file)

        assert session.rois == []
        assert session.view.scale == 1.0
        assert session.view.offset == (0.0, 0.0)

    def test_bad_file_leaves_state(self, session, image_file, tmp_path):
        bad = tmp_path / "broken.png"
        bad.write_bytes(b"not a png")

        with pytest.raises(ValueError):
            session.load_image(bad)

        assert session.image_path == image_file
        assert session.has_image

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            RoiSession().open_image(tmp_path / "nope.png")

    def test_folder_navigation(self, tmp_path):
        for name in ("a.png", "b.png", "c.png"):
            write_image(tmp_path / name)
        session = RoiSession()
        session.open_image(tmp_path / "b.png")

        assert session.current_index == 1
        assert session.has_previous() and session.has_next()

        assert session.next_image()
        assert session.image_path.name == "c.png"
        assert not session.has_next()
        assert not session.next_image()

        assert session.previous_image()
        assert session.previous_image()
        assert session.image_path.name == "a.png"
        assert session.current_index == 0
        assert not session.previous_image()

    def test_unlisted_extension_is_still_navigable(self, tmp_path):
        write_image(tmp_path / "a.png")
        write_image(tmp_path / "z.bmp")
        session = RoiSession()
        session.open_image(tmp_path / "z.bmp")

        assert [p.name for p in session.image_paths] == ["a.png", "z.bmp"]
        assert session.current_index == 1
        assert session.mime == "application/octet-stream"


class TestTransforms:
    def test_requires_image(self):
        with pytest.raises(ValueError):
            RoiSession().apply_transform("blur")

    def test_unknown_transform(self, session):
        with pytest.raises(KeyError):
            session.apply_transform("sharpen")

    def test_transforms_start_from_base(self, session):
        first = session.apply_transform("invert")
        second = session.apply_transform("invert")
        assert np.array_equal(first, second)
        assert session.last_transform == "invert"
        assert session.data_url.startswith("data:image/png;base64,")

    def test_rotation_accumulates(self, session):
        original = session.display_image.copy()
        session.apply_transform("rotate_90")
        assert session.image_size == (80, 100)
        session.apply_transform("rotate_90")
        assert np.array_equal(session.display_image, np.rot90(original, 2))

    def test_later_transforms_see_rotation(self, session):
        session.apply_transform("rotate_90")
        gray = session.apply_transform("grayscale")
        assert gray.shape == (100, 80)

    def test_geometry_change_clears_rois(self, session):
        session.place_subsample(50, 40)
        session.apply_transform("invert")
        assert len(session.rois) == 1
        session.apply_transform("resize")
        assert session.rois == []
        assert session.image_size == (200, 200)

    def test_rotating_square_image_clears_rois(self, tmp_path):
        session = RoiSession()
        session.open_image(write_image(tmp_path / "square.png", 100, 100))
        session.place_subsample(10, 50)
        session.apply_transform("rotate_90")
        assert session.image_size == (100, 100)
        assert session.rois == []

    def test_leaving_resize_result_clears_rois(self, tmp_path):
        session = RoiSession()
        session.open_image(write_image(tmp_path / "big.png", 200, 200))
        session.apply_transform("resize")
        session.place_subsample(50, 50)
        session.apply_transform("invert")
        assert session.rois == []

    def test_crop_too_small_image(self, session):
        with pytest.raises(ValueError):
            session.apply_transform("crop")


class TestSubsample:
    def test_centred_on_click(self, session):
        roi = session.place_subsample(50, 40)
        assert roi.as_rect() == (42, 32, 16, 16)
        assert session.rois == [roi]

    @pytest.mark.parametrize("point, expected", [
        ((2, 2), (0, 0)),
        ((99, 79), (84, 64)),
        ((0, 79), (0, 64)),
    ])
    def test_clamped_inside_image(self, session, point, expected):
        roi = session.place_subsample(*point)
        assert (roi.x, roi.y) == expected

    def test_outside_image_ignored(self, session):
        assert session.place_subsample(100, 10) is None
        assert session.place_subsample(-1, 10) is None
        assert session.rois == []

    def test_roi_size_bounds(self, session):
        assert session.set_roi_size(5, 1000) == (16, 512)
        assert session.set_roi_size(32, 24) == (32, 24)

    def test_oversized_roi_shrinks_to_image(self, session):
        session.set_roi_size(512, 512)
        roi = session.place_subsample(50, 40)
        assert roi.as_rect() == (0, 0, 100, 80)

    def test_remove_first_match(self, session):
        first = session.place_subsample(50, 40)
        second = session.place_subsample(52, 42)

        assert session.remove_roi_at(51, 41) is first
        assert session.rois == [second]
        assert session.remove_roi_at(0, 0) is None

    def test_clear(self, session):
        session.place_subsample(50, 40)
        session.clear_rois()
        assert session.rois == []


class TestDrag:
    def test_drag_creates_normalized_roi(self, session):
        assert session.begin_drag(30, 25)
        session.update_drag(10, 10)
        assert session.drag_rect() == (10, 10, 20, 15)

        roi = session.end_drag()

        assert roi.as_rect() == (10, 10, 20, 15)
        assert session.rois == [roi]
        assert not session.is_dragging
        assert session.drag_rect() is None

    def test_click_places_default_box(self, session):
        session.begin_drag(50, 40)
        assert session.end_drag().as_rect() == (40, 30, 20, 20)

    def test_click_near_edge_is_clamped(self, session):
        session.begin_drag(2, 2)
        assert session.end_drag().as_rect() == (0, 0, 20, 20)

    def test_flat_drag_gets_default_height(self, session):
        session.begin_drag(10, 40)
        session.update_drag(30, 40)
        assert session.end_drag().as_rect() == (10, 30, 20, 20)

    def test_drag_past_edge_is_moved_inside(self, session):
        session.begin_drag(90, 70)
        session.update_drag(150, 120)
        assert session.end_drag().as_rect() == (40, 30, 60, 50)

    def test_shift_release_deletes(self, session):
        session.begin_drag(10, 10)
        session.update_drag(30, 30)
        session.end_drag()

        session.begin_drag(15, 15)
        session.update_drag(40, 40)
        assert session.end_drag(shift=True) is None
        assert session.rois == []

    def test_begin_outside_image(self, session):
        assert not session.begin_drag(120, 10)
        assert not session.is_dragging
        assert session.end_drag() is None

    def test_update_without_drag_is_ignored(self, session):
        session.update_drag(5, 5)
        assert session.drag_rect() is None


class TestSamples:
    def test_rgb_channel_dump(self, session):
        text = session.describe_samples(RegionOfInterest(0, 0, 2, 1))
        # the fixture image is BGR (10, 20, 30)
        assert text.startswith("R Channel (2x1)\n  30  30\n")
        assert "[ 30,  20,  10] [ 30,  20,  10]" in text

    def test_gray_dump(self, session):
        session.sample_mode = SampleMode.GRAY
        text = session.describe_samples(RegionOfInterest(0, 0, 2, 2))
        lines = text.splitlines()
        assert lines[0] == "Grayscale ROI @ (0,0)"
        assert len(lines) == 3

    def test_gray_limit_from_config(self, image_file):
        session = RoiSession(AppConfig(gray_dump_limit=5))
        session.open_image(image_file)
        session.sample_mode = SampleMode.GRAY
        text = session.describe_samples(RegionOfInterest(0, 0, 4, 4))
        assert sum(line.count(",") for line in text.splitlines()[1:]) == 5

    def test_draw_mode_lists_pixels(self, session):
        session.placement_mode = PlacementMode.DRAW
        text = session.describe_samples(RegionOfInterest(3, 4, 1, 2))
        assert text.splitlines() == [
            "Pixel at (3, 4): R=30 G=20 B=10",
            "Pixel at (3, 5): R=30 G=20 B=10",
        ]

    def test_gray_header_reports_clicked_point(self, session):
        session.sample_mode = SampleMode.GRAY
        roi = session.place_subsample(2, 3)
        assert (roi.x, roi.y) == (0, 0)
        text = session.describe_samples(roi, point=(2, 3))
        assert text.splitlines()[0] == "Grayscale ROI @ (2,3)"

    def test_single_channel_image_uses_gray_dump(self, session):
        session.apply_transform("grayscale")
        text = session.describe_samples(RegionOfInterest(0, 0, 2, 2))
        assert text.startswith("Grayscale ROI")

    def test_no_image(self):
        assert RoiSession().describe_samples(RegionOfInterest(0, 0, 1, 1)) == ""
