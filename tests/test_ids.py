import re

from workloadscout.ids import new_id

UUID_V4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


def test_matches_v4_pattern():
    value = new_id()
    match = UUID_V4.fullmatch(value)
    assert bool(match) is True
    assert match.group(0) == value


def test_version_nibble_is_four():
    assert new_id()[14] == "4"


def test_variant_bits_are_rfc4122():
    assert new_id()[19] in "89ab"


def test_no_collisions_across_many_samples():
    n = 4096
    ids = {new_id() for _ in range(n)}
    assert len(ids) == n


def test_not_serially_ordered():
    lt = gt = 0
    for _ in range(500):
        a, b = new_id(), new_id()
        assert a != b
        if a < b:
            lt += 1
        else:
            gt += 1
    assert 150 <= lt <= 350
    assert 150 <= gt <= 350


def test_canonical_36_chars():
    value = new_id()
    assert len(value) == 36
    assert [value[i] for i in (8, 13, 18, 23)] == ["-"] * 4