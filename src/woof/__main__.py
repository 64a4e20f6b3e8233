"""Entry point for running Woof as a module.

Usage:
    python -m woof validate-config
    python -m woof --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env (WOOF_CONFIG_PATH, WOOF_IMAP_PASSWORD) before anything reads it

from woof.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
