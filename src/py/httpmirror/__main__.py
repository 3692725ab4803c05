from .server import run
from .services.mirror import MirrorService
from .utils.logging import info
from . import config


def main() -> None:
    info(
        "Starting httpmirror",
        Host=config.HOST,
        Port=config.PORT,
        Seed=config.SEED,
    )
    run(MirrorService())


if __name__ == "__main__":
    main()

# EOF
