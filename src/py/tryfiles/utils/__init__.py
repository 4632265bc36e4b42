from inspect import isawaitable
from typing import Any, Awaitable, TypeVar, cast

T = TypeVar("T")


async def awaited(value: T | Awaitable[T]) -> T:
	"""Returns the value, awaiting it first when it is awaitable. This lets
	callers accept both plain and `async` callbacks."""
	if isawaitable(value):
		return cast(T, await cast(Awaitable[Any], value))
	else:
		return value


# EOF
