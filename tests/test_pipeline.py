"""Tests for photo analysis with fake detector and embedder."""
import threading

import cv2
import numpy as np
import pytest

from face_people.config import LibraryConfig
from face_people.detection import Detector, FaceDetection
from face_people.embedders import Embedder
from face_people.models import BoundingBox
from face_people.pipeline import analyze_library, analyze_photo


FACE = FaceDetection(BoundingBox(100, 100, 80, 80), left_eye=(120.0, 130.0), right_eye=(160.0, 130.0))
FACE_NO_EYES = FaceDetection(BoundingBox(220, 220, 60, 60))


class FakeDetector(Detector):
    """Returns the same detections for every photo."""

    def __init__(self, detections, on_detect=None):
        self.detections = list(detections)
        self.on_detect = on_detect
        self.calls = 0

    def detect(self, photo_path, cancel=None):
        self.calls += 1
        if self.on_detect is not None:
            self.on_detect()
        return list(self.detections)


class FailingDetector(Detector):
    def detect(self, photo_path, cancel=None):
        raise RuntimeError("detector crashed")


class FixedEmbedder(Embedder):
    def __init__(self, vector):
        self.vector = None if vector is None else np.asarray(vector, dtype=np.float32)

    def embed(self, face):
        assert face.ndim == 3
        return self.vector


class FailingEmbedder(Embedder):
    def embed(self, face):
        raise RuntimeError("inference crashed")


@pytest.fixture
def photo(tmp_path):
    """Write a plain grey test photo."""
    path = tmp_path / "photos" / "group.jpg"
    path.parent.mkdir()
    cv2.imwrite(str(path), np.full((400, 400, 3), 128, dtype=np.uint8))
    return path


class TestAnalyzePhoto:
    def test_records_faces_and_crops(self, store, photo):
        records = analyze_photo(store, photo, FakeDetector([FACE, FACE_NO_EYES]), FixedEmbedder([1.0, 0.0]))
        assert len(records) == 2
        assert store.is_analyzed(str(photo))
        assert store.has_faces_for_photo(str(photo))
        for record in records:
            assert store.get_face(record.id) is record
            crop = cv2.imread(record.face_image_path)
            assert crop.shape == (128, 128, 3)
        assert records[0].bounding_box == FACE.bounding_box
        # identical embeddings end up in one person
        people = store.list_people()
        assert len(people) == 1
        assert people[0].face_ids == [r.id for r in records]

    def test_photo_is_analyzed_once(self, store, photo):
        detector = FakeDetector([FACE])
        analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0]))
        assert analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0])) == []
        assert detector.calls == 1
        assert len(store.list_faces()) == 1

    def test_relative_and_absolute_paths_are_one_photo(self, store, photo, monkeypatch):
        """Should analyse a photo once whichever spelling of its path is used."""
        monkeypatch.chdir(photo.parent.parent)
        detector = FakeDetector([FACE])
        analyze_photo(store, "photos/group.jpg", detector, FixedEmbedder([1.0, 0.0]))
        assert analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0])) == []
        assert (detector.calls, len(store.list_faces())) == (1, 1)
        assert store.list_faces()[0].source_photo_path == str(photo.resolve())
        assert store.has_faces_for_photo("photos/../photos/group.jpg")

    def test_symlinked_photo_is_not_analyzed_twice(self, store, photo, tmp_path):
        link = tmp_path / "link.jpg"
        link.symlink_to(photo)
        detector = FakeDetector([FACE])
        analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0]))
        assert analyze_photo(store, link, detector, FixedEmbedder([1.0, 0.0])) == []
        assert detector.calls == 1

    def test_no_faces_still_marks_analyzed(self, store, photo):
        assert analyze_photo(store, photo, FakeDetector([]), FixedEmbedder([1.0, 0.0])) == []
        assert store.is_analyzed(str(photo))
        assert not store.has_faces_for_photo(str(photo))

    def test_detector_failure_degrades_to_no_faces(self, store, photo):
        assert analyze_photo(store, photo, FailingDetector(), FixedEmbedder([1.0, 0.0])) == []
        assert store.is_analyzed(str(photo))

    def test_missing_embedding_is_recorded_but_unassigned(self, store, photo):
        records = analyze_photo(store, photo, FakeDetector([FACE]), FailingEmbedder())
        assert len(records) == 1
        assert records[0].embedding is None
        assert store.list_people() == []

    def test_undecodable_photo(self, store, tmp_path):
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"not a jpeg")
        assert analyze_photo(store, broken, FakeDetector([FACE]), FixedEmbedder([1.0, 0.0])) == []
        assert store.is_analyzed(str(broken))
        assert store.list_faces() == []

    def test_face_outside_image_is_skipped(self, store, photo):
        edge = FaceDetection(BoundingBox(0, 0, 0, 0))
        assert analyze_photo(store, photo, FakeDetector([edge]), FixedEmbedder([1.0, 0.0])) == []

    def test_cancel_before_detection(self, store, photo):
        cancel = threading.Event()
        cancel.set()
        detector = FakeDetector([FACE])
        assert analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0]), cancel=cancel) == []
        assert detector.calls == 0
        assert not store.is_analyzed(str(photo))

    def test_cancel_during_detection(self, store, photo):
        cancel = threading.Event()
        detector = FakeDetector([FACE, FACE_NO_EYES], on_detect=cancel.set)
        assert analyze_photo(store, photo, detector, FixedEmbedder([1.0, 0.0]), cancel=cancel) == []
        assert store.list_faces() == []


class TestAnalyzeLibrary:
    def test_batch_then_cluster(self, store, photo):
        second = photo.parent / "second.png"
        cv2.imwrite(str(second), np.full((300, 300, 3), 200, dtype=np.uint8))
        (photo.parent / "notes.txt").write_text("not a photo")
        config = LibraryConfig(data_dir=photo.parent, workers=2)
        seen = []

        result = analyze_library(
            store, [photo.parent], FakeDetector([FACE]), FixedEmbedder([0.0, 1.0]),
            config=config, progress=lambda path, n: seen.append((path.name, n)),
        )
        assert result.photos == 2
        assert result.analyzed == 2
        assert result.faces == 2
        assert result.people == 1
        assert sorted(seen) == [("group.jpg", 1), ("second.png", 1)]
        assert len(store.list_people()) == 1

    def test_second_run_skips_analyzed(self, store, photo):
        config = LibraryConfig(data_dir=photo.parent, workers=1)
        analyze_library(store, [photo], FakeDetector([FACE]), FixedEmbedder([1.0, 0.0]), config=config)
        result = analyze_library(store, [photo], FakeDetector([FACE]), FixedEmbedder([1.0, 0.0]), config=config)
        assert result.analyzed == 0
        assert result.people is None
        assert len(store.list_faces()) == 1

    def test_same_folder_through_two_paths(self, store, photo, monkeypatch):
        """Should skip every photo of a folder already analysed under another path."""
        monkeypatch.chdir(photo.parent)
        config = LibraryConfig(workers=1, cluster_after_batch=False)
        detector = FakeDetector([FACE])
        first = analyze_library(store, ["."], detector, FixedEmbedder([1.0, 0.0]), config=config)
        second = analyze_library(store, [photo.parent, photo], detector, FixedEmbedder([1.0, 0.0]), config=config)
        assert (first.analyzed, second.analyzed) == (1, 0)
        assert detector.calls == 1
        assert len(store.list_faces()) == 1

    def test_unreadable_file_is_marked_analyzed(self, store, tmp_path):
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"garbage")
        detector = FakeDetector([FACE])
        analyze_library(store, [broken], detector, FixedEmbedder([1.0, 0.0]), config=LibraryConfig(workers=1))
        assert store.is_analyzed(str(broken))
        assert detector.calls == 0

    def test_cancelled_batch_skips_clustering(self, store, photo):
        cancel = threading.Event()
        cancel.set()
        result = analyze_library(store, [photo], FakeDetector([FACE]), FixedEmbedder([1.0, 0.0]),
                                 config=LibraryConfig(workers=1), cancel=cancel)
        assert result.cancelled
        assert result.people is None
