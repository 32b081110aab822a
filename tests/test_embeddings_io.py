"""Tests for the Parquet export of embeddings."""
import numpy as np

from face_people.embeddings_io import read_embeddings, write_embeddings


def test_export_round_trip(store, make_face, tmp_path):
    a = make_face([1.0, 0.0])
    blind = make_face(None, photo="/photos/b.jpg")
    person_id = store.add_and_match_face(a)
    store.add_and_match_face(blind)

    out = tmp_path / "export" / "faces.parquet"
    assert write_embeddings(store, out) == 2
    df = read_embeddings(out)
    assert df["face_id"].tolist() == [a.id, blind.id]
    assert df["person_id"].tolist()[0] == person_id
    assert df["person_id"].isna().tolist() == [False, True]
    assert np.array_equal(df["embedding"][0], a.embedding)
    assert df["embedding"][1] is None
    assert df["bbox_width"].tolist() == [64, 64]
