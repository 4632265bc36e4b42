import re
from typing import ClassVar, Pattern, Protocol

from mypy_extensions import mypyc_attr

# SEE: https://developer.mozilla.org/en-US/docs/Web/HTTP/CORS
# SEE: http://stackoverflow.com/questions/16386148/why-browser-do-not-follow-redirects-using-xmlhttprequest-and-cors/20854800#20854800


class WithHeaders(Protocol):
	def header(self, name: str) -> str | None: ...


# A CORS setting is either nothing, the `*` wildcard, or a pattern
# that origins must match.
TCORSMatch = str | Pattern[str] | None


@mypyc_attr(allow_interpreted_subclasses=True)
class CORSPolicy:
	"""Decides which access control headers are added to a response. The
	policy is picked once, from the configuration, using `Make`."""

	@staticmethod
	def Make(match: "TCORSMatch | CORSPolicy" = None) -> "CORSPolicy":
		if isinstance(match, CORSPolicy):
			return match
		elif not match:
			return NoCORS()
		elif match == "*":
			return WildcardCORS()
		elif isinstance(match, str):
			return PatternCORS(re.compile(match))
		else:
			return PatternCORS(match)

	def apply(self, request: WithHeaders, headers: dict[str, str]) -> dict[str, str]:
		"""Adds the CORS headers for the request to the given response
		headers, returning them."""
		return headers

	@property
	def isEnabled(self) -> bool:
		return False


class NoCORS(CORSPolicy):
	"""No CORS headers, which is the default."""


class WildcardCORS(CORSPolicy):
	"""Lets any origin read the resources, without credentials. This is
	for fully public assets and APIs."""

	HEADERS: ClassVar[dict[str, str]] = {
		"Access-Control-Allow-Origin": "*",
		"Access-Control-Allow-Methods": "OPTIONS,HEAD,GET",
		# Allows anything but `Authorization`, as credentials are not allowed
		"Access-Control-Allow-Headers": "*",
	}

	def apply(self, request: WithHeaders, headers: dict[str, str]) -> dict[str, str]:
		headers.update(self.HEADERS)
		return headers

	@property
	def isEnabled(self) -> bool:
		return True


class PatternCORS(CORSPolicy):
	"""Echoes back origins that match the pattern, with credentials and the
	full set of methods. The allowed headers have to be listed explicitly
	when credentials are allowed."""

	METHODS: ClassVar[str] = "OPTIONS,HEAD,GET,POST,PATCH,PUT,DELETE"
	HEADERS: ClassVar[list[str]] = [
		"Accept",
		"Accept-Language",
		"Authorization",
		"Cache-Control",
		"If-Modified-Since",
		"Content-Language",
		"Content-Type",
		"Expires",
		"Last-Modified",
		"Pragma",
		"Range",
		"User-Agent",
		"X-Requested-With",
	]
	# Preflight responses are cached for 7 days
	MAX_AGE: ClassVar[int] = 7 * 24 * 60 * 60

	def __init__(self, pattern: Pattern[str]) -> None:
		self.pattern: Pattern[str] = pattern

	def accepts(self, origin: str | None) -> bool:
		return bool(origin and self.pattern.search(origin))

	def apply(self, request: WithHeaders, headers: dict[str, str]) -> dict[str, str]:
		origin: str | None = request.header("Origin")
		if origin and self.accepts(origin):
			headers.update(
				{
					"Access-Control-Allow-Origin": origin,
					"Access-Control-Allow-Methods": self.METHODS,
					"Access-Control-Allow-Headers": ",".join(self.HEADERS),
					"Access-Control-Allow-Credentials": "true",
					"Access-Control-Max-Age": str(self.MAX_AGE),
				}
			)
			# Responses differ by origin, on top of what the handler set
			vary: str | None = headers.get("Vary")
			headers["Vary"] = (
				f"{vary}, Origin"
				if vary and "origin" not in (_.strip().lower() for _ in vary.split(","))
				else vary or "Origin"
			)
		return headers

	@property
	def isEnabled(self) -> bool:
		return True

	def __repr__(self) -> str:
		return f"PatternCORS({self.pattern.pattern!r})"


# EOF
