"""Tests for the external face detector boundary."""
import json
import sys
import textwrap
import threading

import pytest

from face_people.detection import FaceDetection, NullDetector, SubprocessDetector, parse_detections
from face_people.models import BoundingBox


def write_script(tmp_path, body):
    script = tmp_path / "fake_detector.py"
    script.write_text(textwrap.dedent(body))
    return [sys.executable, str(script)]


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8\xff")
    return path


class TestParseDetections:
    def test_boxes_and_eyes(self):
        output = json.dumps([
            {"x": 10.7, "y": 20, "width": 30, "height": 40,
             "leftEyeX": 15, "leftEyeY": 25, "rightEyeX": 30, "rightEyeY": 26},
            {"x": 1, "y": 2, "width": 3, "height": 4, "leftEyeX": 5},
        ])
        faces = parse_detections(output)
        assert faces[0] == FaceDetection(BoundingBox(10, 20, 30, 40), (15.0, 25.0), (30.0, 26.0))
        # incomplete eye landmarks are ignored
        assert faces[1] == FaceDetection(BoundingBox(1, 2, 3, 4))
        assert not faces[1].has_eyes

    @pytest.mark.parametrize("output", ["", "not json", "{}", '[{"x": 1}]', '[{"x": "a", "y": 1, "width": 1, "height": 1}]'])
    def test_malformed_output_is_empty(self, output):
        assert parse_detections(output) == []

    def test_scaled(self):
        face = FaceDetection(BoundingBox(100, 50, 40, 20), (110.0, 60.0), (130.0, 60.0))
        half = face.scaled(0.5)
        assert half.bounding_box == BoundingBox(50, 25, 20, 10)
        assert half.left_eye == (55.0, 30.0)


class TestSubprocessDetector:
    def test_runs_executable(self, tmp_path, photo):
        command = write_script(tmp_path, """
            import json, sys
            assert sys.argv[1].endswith("photo.jpg")
            print(json.dumps([{"x": 1, "y": 2, "width": 3, "height": 4}]))
        """)
        faces = SubprocessDetector(command).detect(photo)
        assert faces == [FaceDetection(BoundingBox(1, 2, 3, 4))]

    def test_timeout_returns_empty(self, tmp_path, photo):
        command = write_script(tmp_path, """
            import time
            time.sleep(10)
        """)
        assert SubprocessDetector(command, timeout=0.5).detect(photo) == []

    def test_nonzero_exit_returns_empty(self, tmp_path, photo):
        command = write_script(tmp_path, """
            import sys
            print("[]")
            sys.exit(3)
        """)
        assert SubprocessDetector(command).detect(photo) == []

    def test_undecodable_output_returns_empty(self, tmp_path, photo):
        command = write_script(tmp_path, """
            import sys
            sys.stdout.buffer.write(b"\\xff\\xfe[]")
        """)
        assert SubprocessDetector(command).detect(photo) == []

    def test_cancelled_while_waiting(self, tmp_path, photo):
        command = write_script(tmp_path, """
            import time
            time.sleep(10)
        """)
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            assert SubprocessDetector(command, timeout=5).detect(photo, cancel) == []
        finally:
            timer.cancel()

    def test_missing_photo_or_tool(self, tmp_path, photo):
        command = write_script(tmp_path, "print('[]')\n")
        assert SubprocessDetector(command).detect(tmp_path / "missing.jpg") == []
        assert SubprocessDetector([str(tmp_path / "no-such-tool")]).detect(photo) == []

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            SubprocessDetector([])


def test_null_detector(photo):
    assert NullDetector().detect(photo) == []
