"""Shared builders for context tree tests."""

from __future__ import annotations

from datetime import datetime, timedelta

from context_tree.cluster import ClusterNode


def square(lat: float, lng: float, side: float) -> list[dict]:
    return [
        {"latitude": lat, "longitude": lng},
        {"latitude": lat + side, "longitude": lng},
        {"latitude": lat + side, "longitude": lng + side},
        {"latitude": lat, "longitude": lng + side},
    ]


def leaf(key: str, start: datetime, minutes: float, tags: dict, latlngs: list[dict]) -> ClusterNode:
    return ClusterNode.from_summary(
        {
            "key": key,
            "times": [(start, start + timedelta(minutes=minutes))],
            "tags": tags,
            "latlngs": latlngs,
        }
    )


def synthetic_summaries(n: int) -> list[dict]:
    """Deterministic, varied cluster summaries spread over disjoint locations."""

    kinds = ["cafe", "park", "pub", "bank"]
    summaries = []
    for i in range(n):
        start = datetime(2014, 1, 1) + timedelta(days=i, hours=(i * 5) % 24)
        summaries.append(
            {
                "key": f"node_{i}",
                "times": [(start, start + timedelta(minutes=(i * 7) % 90 + 5))],
                "tags": {"amenity": kinds[i % 4]},
                "latlngs": square(52.0 + i * 0.01, 0.1, (i % 5 + 1) * 0.0001),
            }
        )
    return summaries
