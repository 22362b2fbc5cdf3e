"""Module entrypoint for ``python -m orion_api`` CLI usage."""

from orion_api.cli import app as cli_app


def main() -> None:
    cli_app()


if __name__ == "__main__":
    main()
