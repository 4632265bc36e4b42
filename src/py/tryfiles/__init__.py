from .http.model import (
	HTTPRequest,
	HTTPResponse,
	HTTPRequestError,
)  # NOQA: F401
from .features.cors import CORSPolicy  # NOQA: F401
from .services.files import StaticResolver  # NOQA: F401
from .utils.cache import MemoryCache  # NOQA: F401
from .app import TryFiles, TryFilesOptions, tryFiles  # NOQA: F401
from .server import run  # NOQA: F401


# EOF
