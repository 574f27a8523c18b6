"""Collection iteration primitives.

Everything here is stateless and single-pass.  A *collection* is either a
mapping (traversed in insertion order, callbacks see values) or any other
iterable (traversed in index order).  Results are always new lists; inputs are
never mutated.

Note: ``map``, ``filter`` and ``reduce`` deliberately shadow the builtins of
the same name inside this module; use ``funkit.map`` etc. from outside.
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from funkit.core.base import ensure_callable
from funkit.errors import EmptyCollectionError

T = TypeVar("T")
U = TypeVar("U")

_MISSING: Any = object()


def identity(value: T) -> T:
    """Return *value* unchanged; the default predicate for :func:`every`/:func:`some`."""
    return value


def _values(collection: Any) -> Iterable[Any]:
    if isinstance(collection, Mapping):
        return collection.values()
    return collection


# ---------------------------------------------------------------------------
# Kernel
# ---------------------------------------------------------------------------


def each(collection: Any, iterator: Callable[[Any, Any, Any], Any]) -> None:
    """Call ``iterator(value, key_or_index, collection)`` once per element."""
    ensure_callable(iterator, "iterator")
    if isinstance(collection, Mapping):
        for key, value in collection.items():
            iterator(value, key, collection)
    else:
        for index, value in enumerate(collection):
            iterator(value, index, collection)


def map(collection: Any, iterator: Callable[[Any], U]) -> List[U]:
    """Return ``[iterator(value) for value in collection]``."""
    ensure_callable(iterator, "iterator")
    results: List[U] = []
    each(collection, lambda value, _key, _coll: results.append(iterator(value)))
    return results


def filter(collection: Any, predicate: Callable[[Any], Any]) -> List[Any]:
    """Return the values for which *predicate* is truthy, in traversal order."""
    ensure_callable(predicate, "predicate")
    passed: List[Any] = []

    def _keep(value, _key, _coll):
        if predicate(value):
            passed.append(value)

    each(collection, _keep)
    return passed


def reject(collection: Any, predicate: Callable[[Any], Any]) -> List[Any]:
    """Complement of :func:`filter`."""
    ensure_callable(predicate, "predicate")
    return filter(collection, lambda value: not predicate(value))


def reduce(collection: Any, iterator: Callable[[Any, Any], Any], initial: Any = _MISSING) -> Any:
    """Left fold of ``iterator(accumulator, value)`` over the collection.

    Without *initial* the first element seeds the fold; an empty collection
    then raises :class:`~funkit.errors.EmptyCollectionError`.

    >>> reduce([1, 2, 3], lambda total, n: total + n, 0)
    6
    """
    ensure_callable(iterator, "iterator")
    values = iter(_values(collection))
    if initial is _MISSING:
        try:
            accumulator = next(values)
        except StopIteration:
            raise EmptyCollectionError(
                "reduce() of empty collection with no initial value",
                data={"type": type(collection).__name__},
            ) from None
    else:
        accumulator = initial
    for value in values:
        accumulator = iterator(accumulator, value)
    return accumulator


def contains(collection: Any, target: Any) -> bool:
    """True when some value equals *target* (mapping values, not keys)."""
    return reduce(collection, lambda found, value: found or bool(value == target), False)


def every(collection: Any, predicate: Optional[Callable[[Any], Any]] = None) -> bool:
    """True when *predicate* is truthy for all values; stops calling it after the first miss."""
    predicate = predicate or identity
    ensure_callable(predicate, "predicate")
    return reduce(collection, lambda ok, value: ok and bool(predicate(value)), True)


def some(collection: Any, predicate: Optional[Callable[[Any], Any]] = None) -> bool:
    """True when *predicate* is truthy for at least one value."""
    predicate = predicate or identity
    ensure_callable(predicate, "predicate")
    return not every(collection, lambda value: not predicate(value))


# ---------------------------------------------------------------------------
# Helpers built on the kernel
# ---------------------------------------------------------------------------


def first(sequence: Sequence[T], n: Optional[int] = None):
    """First element, or a list of the first *n* elements."""
    if n is None:
        return sequence[0]
    return list(sequence[: max(n, 0)])


def last(sequence: Sequence[T], n: Optional[int] = None):
    """Last element, or a list of the last *n* elements."""
    if n is None:
        return sequence[-1]
    if n <= 0:
        return []
    return list(sequence[-n:])


def index_of(sequence: Iterable[Any], target: Any) -> int:
    """Index of the first element equal to *target*, or -1."""
    for index, value in enumerate(sequence):
        if value == target:
            return index
    return -1


def uniq(sequence: Iterable[T]) -> List[T]:
    # Equality based, so unhashable values work too.
    seen: List[T] = []
    for value in sequence:
        if not contains(seen, value):
            seen.append(value)
    return seen


def pluck(collection: Any, key: Any) -> List[Any]:
    """Pull ``item[key]`` out of every element."""
    return map(collection, lambda item: item[key])


def invoke(collection: Any, func_or_name: Any, *args: Any) -> List[Any]:
    """Call a method on every element.

    With a string, ``getattr(item, name)(*args)`` is called and elements that
    lack the attribute are skipped.  With a callable, ``func(item, *args)``.
    """
    if isinstance(func_or_name, str):
        name = func_or_name
        return [getattr(item, name)(*args) for item in _values(collection) if hasattr(item, name)]
    ensure_callable(func_or_name, "func_or_name")
    return map(collection, lambda item: func_or_name(item, *args))


def shuffle(sequence: Iterable[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a shuffled copy; the input is left untouched."""
    shuffled = list(sequence)
    (rng or random).shuffle(shuffled)
    return shuffled


def intersection(*sequences: Iterable[Any]) -> List[Any]:
    """Values of the first sequence present in every other one, first-sequence order."""
    if not sequences:
        return []
    lists = [list(s) for s in sequences]
    return reduce(lists[1:], lambda common, other: filter(common, lambda item: contains(other, item)), lists[0])


def difference(sequence: Iterable[Any], *others: Iterable[Any]) -> List[Any]:
    """Values of *sequence* that appear in none of *others*."""
    lists = [list(o) for o in others]
    return reduce(lists, lambda remaining, other: reject(remaining, lambda item: contains(other, item)), list(sequence))
