from __future__ import annotations

from typing import Sequence, Tuple

Path = Tuple[bool, ...]

ROOT: Path = ()


def path_key(path: Sequence[bool]) -> str:
    r"""
    Canonical string key of a tree node.

    Each decision is encoded as one character, ``"1"`` for *include* and
    ``"0"`` for *exclude*, so the key of a node at depth :math:`d` has exactly
    :math:`d` characters and the root is the empty string.

    Parameters
    ----------
    path : sequence of bool
        Include/exclude decisions from the root.

    Returns
    -------
    str
        Key usable as a dictionary index into a node arena.

    Examples
    --------
    >>> path_key([True, False, True])
    '101'
    >>> path_key([])
    ''
    """
    return "".join("1" if b else "0" for b in path)


def path_from_key(key: str) -> Path:
    """Inverse of :func:`path_key`."""
    try:
        return tuple({"1": True, "0": False}[c] for c in key)
    except KeyError as e:
        raise ValueError(f"Invalid path key {key!r}: unexpected character {e.args[0]!r}") from e


def is_prefix(prefix: Sequence[bool], full: Sequence[bool]) -> bool:
    r"""
    Test whether ``prefix`` is an ancestor of (or equal to) ``full``.

    ``P`` is a prefix of ``Q`` iff :math:`|P| \le |Q|` and
    :math:`P_k = Q_k` for every :math:`k < |P|`. The comparison is
    :math:`\mathcal{O}(\min(|P|, |Q|))`.

    Examples
    --------
    >>> is_prefix((True,), (True, False))
    True
    >>> is_prefix((True, False), (True,))
    False
    """
    n = len(prefix)
    if n > len(full):
        return False
    return tuple(prefix) == tuple(full[:n])


def parent_path(path: Sequence[bool]) -> Path:
    """Path of the parent node; the root is its own parent."""
    return tuple(path[:-1])


def selection_from_path(path: Sequence[bool]) -> Tuple[int, ...]:
    """Sorted-value indices included along ``path``."""
    return tuple(i for i, b in enumerate(path) if b)
