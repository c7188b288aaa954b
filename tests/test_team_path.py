import pytest

from teamperf.core.team_path import TeamPath


def test_parse_and_render():
    path = TeamPath.parse("/root/A/B/")
    assert path.segments == ("root", "A", "B")
    assert str(path) == "/root/A/B/"
    assert path.owner == "B"
    assert path.parent_id == "A"
    assert path.depth == 3


@pytest.mark.parametrize("value", ["", "/", "root/A/", "/root/A", "//"])
def test_malformed_paths(value):
    with pytest.raises(ValueError):
        TeamPath.parse(value)


def test_ancestors_nearest_first():
    assert TeamPath.parse("/root/A/B/C/").ancestors() == ["B", "A", "root"]
    assert TeamPath.root("A").ancestors() == []


def test_descendant_depth():
    a = TeamPath.parse("/root/A/")
    c = a.child("B").child("C")
    assert c.is_descendant_of(a)
    assert c.depth_below(a) == 2
    assert not a.is_descendant_of(a)


def test_prefix_does_not_match_sibling_with_common_start():
    a = TeamPath.parse("/root/A/")
    ab = TeamPath.parse("/root/AB/")
    assert not str(ab).startswith(a.prefix)
    assert not ab.is_descendant_of(a)


def test_depth_below_rejects_unrelated_paths():
    with pytest.raises(ValueError):
        TeamPath.parse("/root/A/").depth_below(TeamPath.parse("/root/B/"))
