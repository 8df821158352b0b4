import argparse

def get_base_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up a Pocket Casts account")
    parser.add_argument("-e", "--env-file", help="Path to a custom .env file", default=None)
    return parser

def add_log_level_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-l", "--log-level", help="Set log level (DEBUG, INFO, WARNING, ERROR)", default="INFO")

def add_init_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before running (local use; production uses Alembic)")

def add_filter_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-f", "--filter", action="append", dest="filters", default=[], help="Episode filter: in_progress, played, not_started, archived, starred (repeatable)")

def add_podcast_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-p", "--podcast-id", help="Restrict to one podcast", default=None)
