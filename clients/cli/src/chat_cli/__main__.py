"""Thin runnable wrapper for ``python -m chat_cli``."""

from chat_cli.chat_app import main

if __name__ == "__main__":
    raise SystemExit(main())
