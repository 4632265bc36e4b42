from os import getenv

PORT: int = int(getenv("PORT", 8080))

# If we're starting in a development environment, we want the server to be
# accessible from everywhere
HOST: str = getenv("HOST", "0.0.0.0")  # nosec: B104

# The directory of static files, and the index document of its directories
FILES_DIR: str = getenv("TRYFILES_DIR", "public")
INDEX: str = getenv("TRYFILES_INDEX", "index.html")

# Either unset, `*` or a regular expression matching allowed origins
CORS: str | None = getenv("TRYFILES_CORS") or None

MEMORY_CACHE: bool = getenv("TRYFILES_MEMORY_CACHE", "0") == "1"

# The most bytes sent for a `Range: bytes=N-` request
RANGE_CHUNK: int = int(getenv("TRYFILES_RANGE_CHUNK", 256 * 1024))

LOG_REQUESTS: bool = getenv("TRYFILES_LOG_REQUESTS", "1") == "1"

# EOF
