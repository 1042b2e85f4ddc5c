"""Allow `python -m deploy_agent` to invoke the CLI entry-point."""

from .cli import app


def main() -> None:
    app(prog_name="deploy-agent")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
