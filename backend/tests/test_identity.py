import pytest

from kiram_chat.utils.identity import derive_key


@pytest.mark.parametrize(
    "a,b",
    [("U1", "U2"), ("landlord-9", "tenant-3"), ("KRC001", "KRL001"), ("b", "a"), ("abc", "ab")],
)
def test_key_is_order_independent(a, b):
    assert derive_key(a, b) == derive_key(b, a)


def test_pair_is_sorted_ascending():
    key, (first, second) = derive_key("KRL42", "KRC07")
    assert (first, second) == ("KRC07", "KRL42")
    assert key == "KRC07_KRL42"


def test_tenant_landlord_scenario():
    assert derive_key("U2", "U1") == ("U1_U2", ("U1", "U2"))
