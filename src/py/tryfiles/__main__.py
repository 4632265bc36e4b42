from .app import TryFilesOptions
from .server import run
from .utils.logging import info
from . import config


def main() -> None:
	info("Starting TryFiles standalone static file server", Root=config.FILES_DIR)
	options = TryFilesOptions(
		filesDir=config.FILES_DIR,
		index=config.INDEX,
		cors=config.CORS,
		memoryCache=config.MEMORY_CACHE,
		byteRangeChunk=config.RANGE_CHUNK,
	)
	run(**options._asdict())


if __name__ == "__main__":
	main()
# EOF
