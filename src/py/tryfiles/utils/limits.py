from typing import NamedTuple
from enum import Enum
import resource


class LimitType(Enum):
	Files = resource.RLIMIT_NOFILE
	FileSize = resource.RLIMIT_FSIZE


REASONABLE_LIMITS: dict[LimitType, int] = {
	# Each accepted connection holds a socket, and each uncached read
	# briefly holds a file.
	LimitType.Files: 10 * 10240,
	LimitType.FileSize: int(1e12),
}


class Limit(NamedTuple):
	type: LimitType
	soft: int
	hard: int


def limit(scope: LimitType) -> Limit:
	return Limit(scope, *resource.getrlimit(scope.value))


def unlimit(
	scope: LimitType, ratio: float = 1.0, *, maximum: int | None = 0
) -> int | bool:
	"""Raises the soft limit of the given resource towards its hard limit,
	capped at a reasonable maximum. Returns the new soft limit, or `False`
	when it could not be changed."""
	lm = limit(scope)
	if lm.soft == resource.RLIM_INFINITY:
		return lm.soft
	hard: int = lm.hard
	if hard == resource.RLIM_INFINITY:
		hard = REASONABLE_LIMITS.get(scope) or lm.soft
	try:
		target = int(lm.soft + ratio * (hard - lm.soft))
		# Darwin reports really high limits that lead to OverflowErrors.
		maximum = REASONABLE_LIMITS.get(scope) if maximum == 0 else maximum
		if maximum:
			target = min(maximum, target)
		target = max(target, lm.soft)
		resource.setrlimit(scope.value, (target, lm.hard))
		return target
	except ValueError:
		return False
	except OSError:
		return False


# EOF
