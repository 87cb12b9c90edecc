from datetime import datetime, timedelta

import pytest

from context_tree.cluster import ANONYMOUS_PREFIX, ClusterNode, coalesce_intervals, format_tag, normalise_tags
from context_tree.errors import InvalidMergeError, SelfReferenceError
from tests.helpers import leaf, square

T0 = datetime(2014, 3, 3, 8, 0)


def _intervals_disjoint(times):
    ordered = sorted(times)
    return all(a_end < b_start for (_, a_end), (b_start, _) in zip(ordered, ordered[1:]))


def test_self_merge_fails():
    node = leaf("a", T0, 30, {"amenity": "cafe"}, square(52.0, 0.1, 0.001))
    with pytest.raises(InvalidMergeError):
        node.merge_with(node)
    with pytest.raises(InvalidMergeError):
        node.merge_with(node.snapshot())


def test_merging_absorbed_node_twice_fails():
    a = leaf("a", T0, 30, {"amenity": "cafe"}, square(52.0, 0.1, 0.001))
    b = leaf("b", T0 + timedelta(days=1), 30, {"amenity": "pub"}, square(53.0, 0.1, 0.001))
    a.merge_with(b)
    with pytest.raises(InvalidMergeError):
        a.merge_with(b)


def test_merge_coalesces_overlapping_and_touching_times():
    a = ClusterNode(times=[(T0, T0 + timedelta(minutes=30)), (T0 + timedelta(hours=5), T0 + timedelta(hours=6))], key="a")
    b = ClusterNode(
        times=[
            (T0 + timedelta(minutes=20), T0 + timedelta(minutes=50)),
            (T0 + timedelta(hours=6), T0 + timedelta(hours=7)),
            (T0 + timedelta(days=1), T0 + timedelta(days=1, minutes=10)),
        ],
        key="b",
    )
    a.merge_with(b)
    assert a.times == [
        (T0, T0 + timedelta(minutes=50)),
        (T0 + timedelta(hours=5), T0 + timedelta(hours=7)),
        (T0 + timedelta(days=1), T0 + timedelta(days=1, minutes=10)),
    ]
    assert _intervals_disjoint(a.times)


def test_coalesce_intervals_sorts_and_deduplicates():
    t1 = (T0 + timedelta(hours=2), T0 + timedelta(hours=3))
    t2 = (T0, T0 + timedelta(hours=1))
    assert coalesce_intervals([t1, t2, t1]) == [t2, t1]


def test_times_accept_strings_and_epoch_seconds():
    node = ClusterNode(times=[("2014-03-03T08:00:00", "2014-03-03T09:00:00"), (0, 60)], key="x")
    assert node.times[0] == (datetime(1970, 1, 1, 0, 0), datetime(1970, 1, 1, 0, 1))
    assert node.times[1] == (datetime(2014, 3, 3, 8), datetime(2014, 3, 3, 9))
    with pytest.raises(ValueError):
        ClusterNode(times=[(T0, T0 - timedelta(minutes=1))], key="bad")


def test_tags_union_and_multivalue_order_insensitive():
    a = ClusterNode(tags={"amenity": "cafe", "cuisine": ["coffee", "cake"]}, key="a")
    b = ClusterNode(tags=[("amenity", "cafe"), ("cuisine", ["cake", "coffee"]), ("wifi", "yes")], key="b")
    a.merge_with(b)
    assert len(a.tags) == 3
    assert a.tag_strings() == ["amenity:cafe", "cuisine:cake;coffee", "wifi:yes"]
    assert format_tag(("k", frozenset({"b", "a"}))) == "k:a;b"
    assert normalise_tags({"k": 1}) == {("k", "1")}


def test_merge_geography_hulls_intersecting_shapes():
    a = leaf("a", T0, 30, {}, square(52.0, 0.1, 0.001))
    b = leaf("b", T0, 30, {}, square(52.0005, 0.1005, 0.001))
    far = leaf("c", T0, 30, {}, square(52.1, 0.1, 0.001))
    a.merge_with(b)
    assert len(a.geographical) == 1
    assert len(a.geographical[0]) == 6
    a.merge_with(far)
    assert len(a.geographical) == 2


def test_point_inside_polygon_is_absorbed():
    polygon = leaf("poly", T0, 30, {}, square(52.0, 0.1, 0.001))
    point = leaf("pt", T0, 30, {}, [{"latitude": 52.0005, "longitude": 0.1005}])
    polygon.merge_with(point)
    assert len(polygon.geographical) == 1
    assert len(polygon.geographical[0]) == 4


def test_add_child_rejects_self():
    node = ClusterNode(key="a")
    with pytest.raises(SelfReferenceError):
        node.add_child(node)


def test_derived_stats_are_recomputed_after_merge():
    a = ClusterNode(times=[(T0, T0 + timedelta(minutes=30))], key="a")
    b = ClusterNode(
        times=[
            (T0 + timedelta(days=1, hours=4), T0 + timedelta(days=1, hours=5)),
            (T0 + timedelta(days=2, hours=4), T0 + timedelta(days=2, hours=5)),
        ],
        key="b",
    )
    assert a.average_duration == pytest.approx(30.0)
    assert a.mode_starthour == 8
    a.merge_with(b)
    assert a.average_duration == pytest.approx(50.0)
    assert a.mode_starthour == 12


def test_area_of_leaf_and_empty_node():
    node = leaf("a", T0, 30, {}, square(52.0, 0.1, 0.001))
    assert node.area == pytest.approx(111.3 * 68.6, rel=0.03)
    empty = ClusterNode(key="empty")
    assert empty.area == 0.0
    assert empty.average_duration == 0.0
    assert empty.mode_starthour == 0


def _small_tree():
    leaves = [ClusterNode(key=name) for name in ("a", "b", "c", "d")]
    left = ClusterNode(node_id="left")
    right = ClusterNode(node_id="right")
    root = ClusterNode(node_id="root")
    for parent, children in ((left, leaves[:2]), (right, leaves[2:]), (root, [left, right])):
        for child in children:
            parent.add_child(child)
            child.parent = parent
    return root, left, right, leaves


def test_tree_queries_respect_pruning():
    root, left, right, leaves = _small_tree()
    a, b, c, d = leaves
    assert root.descendant_ids() == ["left", "a", "b", "right", "c", "d"]
    assert a.ancestor_ids() == ["left", "root"]
    assert a.sibling_and_descendant_ids() == ["b"]
    assert left.sibling_and_descendant_ids() == ["right", "c", "d"]
    assert root.sibling_and_descendant_ids() == []

    c.pruned = True
    assert root.descendant_ids() == ["left", "a", "b", "right", "d"]
    assert left.sibling_and_descendant_ids() == ["right", "d"]
    assert [n.id for n in root.nodes_array(unpruned_only=True)] == ["root", "left", "a", "b", "right", "d"]
    assert len(root.nodes_array()) == 7
    assert root.unpruned_count() == 6
    assert root.pruned_leaves() == ["c"]

    right.pruned = True
    assert root.max_depth() == 2
    assert "[X] <Cluster right>" in root.render()


def test_parent_is_a_weak_back_reference():
    root, left, _, leaves = _small_tree()
    assert leaves[0].parent is left
    assert left.parent is root
    assert root.parent is None


def test_to_dict_exports_unpruned_children():
    root, _, right, _ = _small_tree()
    right.pruned = True
    exported = root.to_dict()
    assert [child["id"] for child in exported["children"]] == ["left"]
    assert set(exported) == {
        "id",
        "children",
        "leaf",
        "average_duration",
        "mode_starthour",
        "area",
        "descendant_ids",
        "ancestor_ids",
        "sibling_and_descendant_ids",
    }
    assert exported["children"][0]["children"][0]["ancestor_ids"] == ["left", "root"]


def test_falsy_keys_are_kept_as_ids():
    assert ClusterNode.from_summary({"key": 0, "times": [(T0, T0)]}).id == "0"
    assert ClusterNode.from_summary({"id": 0}).id == "0"
    assert ClusterNode(key=0).key == "0"


def test_keyless_nodes_get_reserved_ids():
    first, second = ClusterNode(), ClusterNode()
    assert first.id.startswith(ANONYMOUS_PREFIX)
    assert second.id.startswith(ANONYMOUS_PREFIX)
    assert first.id != second.id
    assert ClusterNode(node_id="given").id == "given"
