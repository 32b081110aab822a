"""
Batch clustering of face embeddings into people.

The whole embedding population is regrouped with DBSCAN using cosine
distance (``1 - cosine similarity``) and a fixed radius.  Neighbour queries
are exact brute-force matrix products; the population of a personal photo
library is small enough that the quadratic cost is acceptable for an
occasional rebuild.  After clustering, a fresh person list is built and
human-assigned names are carried over from previous people that share
faces with a cluster.
"""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import DEFAULT_PERSON_NAME, Person

CLUSTER_EPS = 0.65
CLUSTER_MIN_PTS = 1

UNVISITED = -1
NOISE = -2


def region_query(embeddings: np.ndarray, index: int, eps: float) -> List[int]:
    """Return indices of all points within ``eps`` of ``embeddings[index]``.

    The point itself is part of its own neighbourhood.
    """
    distances = 1.0 - embeddings @ embeddings[index]
    return [int(j) for j in np.nonzero(distances <= eps)[0]]


def dbscan_labels(embeddings: np.ndarray, eps: float = CLUSTER_EPS,
                  min_pts: int = CLUSTER_MIN_PTS,
                  cancel: Optional[threading.Event] = None) -> Optional[np.ndarray]:
    """Label each embedding with a cluster index.

    Parameters
    ----------
    embeddings: ndarray, shape (n_samples, dim)
        L2-normalised embedding vectors.
    eps: float
        Maximum cosine distance between neighbours (inclusive).
    min_pts: int
        Minimum neighbourhood size, including the point itself, for a point
        to seed or extend a cluster.
    cancel: threading.Event, optional
        Checked before each new seed point.

    Returns
    -------
    ndarray of int or None
        Cluster index per point (``NOISE`` for points left unclustered), or
        ``None`` if ``cancel`` was set.
    """
    embeddings = np.asarray(embeddings, dtype=np.float64)
    n = embeddings.shape[0]
    labels = np.full(n, UNVISITED, dtype=np.int64)
    cluster_id = 0
    for i in range(n):
        if cancel is not None and cancel.is_set():
            return None
        if labels[i] != UNVISITED:
            continue
        neighbors = region_query(embeddings, i, eps)
        if len(neighbors) < min_pts:
            labels[i] = NOISE
            continue
        labels[i] = cluster_id
        queue = deque(neighbors)
        while queue:
            point = queue.popleft()
            # Border points previously marked as noise join the cluster
            if labels[point] == NOISE:
                labels[point] = cluster_id
            if labels[point] != UNVISITED:
                continue
            labels[point] = cluster_id
            point_neighbors = region_query(embeddings, point, eps)
            if len(point_neighbors) >= min_pts:
                queue.extend(j for j in point_neighbors if labels[j] < 0)
        cluster_id += 1
    return labels


def cluster_embeddings(embeddings: Sequence[np.ndarray], eps: float = CLUSTER_EPS,
                       min_pts: int = CLUSTER_MIN_PTS,
                       cancel: Optional[threading.Event] = None) -> Optional[List[List[int]]]:
    """Cluster embeddings into groups of indices.

    Embeddings of different dimensionality are not comparable, so the input
    is partitioned by dimension (in first-seen order) and each partition is
    clustered on its own.

    Returns
    -------
    list of list of int or None
        Clusters of indices into ``embeddings``; members are in ascending
        index order.  ``None`` if cancelled.
    """
    groups: "OrderedDict[int, List[int]]" = OrderedDict()
    for idx, emb in enumerate(embeddings):
        groups.setdefault(int(np.asarray(emb).size), []).append(idx)

    clusters: List[List[int]] = []
    for indices in groups.values():
        matrix = np.vstack([np.asarray(embeddings[i], dtype=np.float64).ravel() for i in indices])
        labels = dbscan_labels(matrix, eps=eps, min_pts=min_pts, cancel=cancel)
        if labels is None:
            return None
        by_label: Dict[int, List[int]] = {}
        for local_idx, label in enumerate(labels):
            if label >= 0:
                by_label.setdefault(int(label), []).append(indices[local_idx])
        clusters.extend(by_label[label] for label in sorted(by_label))
    return clusters


def resolve_name(member_ids: set, previous_people: Sequence[Person]) -> str:
    """Pick the first human-assigned name among people sharing faces with a cluster."""
    for person in previous_people:
        if person.name == DEFAULT_PERSON_NAME:
            continue
        if member_ids.intersection(person.face_ids):
            return person.name
    return DEFAULT_PERSON_NAME


def build_people(clusters: Sequence[Sequence[int]], face_ids: Sequence[str],
                 previous_people: Sequence[Person]) -> List[Person]:
    """Turn index clusters into new :class:`Person` objects.

    The first member of each cluster becomes the representative face.
    """
    people: List[Person] = []
    for cluster in clusters:
        members = [face_ids[i] for i in cluster]
        if not members:
            continue
        people.append(Person(
            name=resolve_name(set(members), previous_people),
            face_ids=members,
            representative_face_id=members[0],
        ))
    return people
