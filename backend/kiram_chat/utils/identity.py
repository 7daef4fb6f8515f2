from typing import Tuple

KEY_SEPARATOR = "_"


def derive_key(id_a: str, id_b: str) -> Tuple[str, Tuple[str, str]]:
    """Canonical conversation key for an unordered pair of participants.

    Both clients must call this with the same ids to converge on one record:
    ``derive_key("U2", "U1") == derive_key("U1", "U2") == ("U1_U2", ("U1", "U2"))``.
    """
    first, second = sorted([id_a, id_b])
    return f"{first}{KEY_SEPARATOR}{second}", (first, second)
