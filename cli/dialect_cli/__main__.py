"""Entry point for `python -m dialect_cli` and `starlite-dialects` console script."""

from __future__ import annotations

from dialect_cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
