"""CLI entry point."""

import argparse
import logging
import sys
from datetime import date
from typing import List, Optional

from .config import AppConfig, load_config
from .db import Database
from .http import Http
from .logger import setup_logger
from .models import FormStatus, FormStatusEvent
from .pull import PullFromAggregate
from .server import AggregateServer

logger = logging.getLogger("aggregate_pull")


def build_server(config: AppConfig) -> AggregateServer:
    if config.server.has_credentials:
        return AggregateServer.authenticated(config.server.url, config.server.username, config.server.password)
    return AggregateServer.normal(config.server.url)


def build_http(config: AppConfig, server: AggregateServer) -> Http:
    return Http(
        max_connections=config.pull.max_http_connections,
        timeout=config.pull.timeout,
        user_agent=config.pull.user_agent,
        credentials=server.credentials,
    )


def fetch_forms(http: Http, server: AggregateServer, form_ids: Optional[List[str]] = None) -> List[FormStatus]:
    """Forms available on the server, filtered by `form_ids` when given."""
    response = http.execute(server.get_form_list_request())
    if not response.is_success():
        if response.is_redirection():
            reason = "Redirection detected"
        elif response.is_unauthorized():
            reason = "Wrong credentials"
        elif response.is_not_found():
            reason = "Aggregate not found"
        else:
            reason = f"{response.status_code} {response.reason}"
        raise SystemExit(f"Error connecting to Aggregate: {reason}")

    forms = [definition.to_form_status() for definition in response.get()]
    if form_ids:
        wanted = set(form_ids)
        forms = [f for f in forms if f.form_id in wanted]
        missing = wanted - {f.form_id for f in forms}
        if missing:
            raise SystemExit(f"Form(s) not found: {', '.join(sorted(missing))}")
    return forms


def on_event(event: FormStatusEvent):
    print(f"{event.form.form_name} - {event.status_string}")


def on_error(exc: BaseException):
    print(f"Error pulling a form: {exc} (see the logs for more info)", file=sys.stderr)
    logger.error("Error pulling a form", exc_info=exc)


def run_pull(config: AppConfig, db: Database, form_ids: Optional[List[str]] = None,
             resume_last_pull: bool = True, start_from_date: Optional[date] = None):
    server = build_server(config)
    http = build_http(config, server)

    try:
        forms = fetch_forms(http, server, form_ids or config.forms)
        if not forms:
            print("No forms to pull.")
            return

        pull_op = PullFromAggregate(
            http, server, config.storage_dir, db,
            include_incomplete=config.pull.include_incomplete,
            on_event=on_event,
            batch_size=config.pull.batch_size,
        )
        runner = pull_op.launch(
            forms, db, on_error,
            resume_last_pull=resume_last_pull,
            start_from_date=start_from_date,
            max_workers=config.pull.max_http_connections,
        )
        try:
            runner.wait_for_completion()
        except KeyboardInterrupt:
            print("\nCancelling, waiting for in-flight downloads...")
            runner.cancel()
            runner.wait_for_completion()

        print()
        print("All operations completed")
        print()
    finally:
        http.close()


def list_forms(config: AppConfig):
    server = build_server(config)
    with build_http(config, server) as http:
        forms = fetch_forms(http, server)
    print(f"{'Form ID':<40} {'Name':<40} {'Version':>10}")
    print("-" * 92)
    for form in forms:
        print(f"{form.form_id:<40} {form.form_name:<40} {form.version or '':>10}")


def show_stats(db: Database):
    print("\n" + "=" * 70)
    print("  RECORDED SUBMISSIONS")
    print("=" * 70)
    print(f"{'Form':<40} {'Count':>8} {'Last recorded':>20}")
    print("-" * 70)
    total = 0
    for form_id, count, last_recorded in db.get_stats():
        print(f"{form_id:<40} {count:>8} {last_recorded or '':>20}")
        total += count
    print("-" * 70)
    print(f"{'TOTAL':<40} {total:>8}")
    print()


def main():
    parser = argparse.ArgumentParser(description="Pull forms and submissions from ODK Aggregate")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    parser.add_argument("--form", action="append", default=None,
                        help="Form ID to pull (repeatable). Defaults to the config's forms, or all")
    parser.add_argument("--no-resume", action="store_true",
                        help="Ignore the stored cursor and pull every submission")
    parser.add_argument("--start-from-date", type=date.fromisoformat, default=None,
                        help="Only pull submissions updated on or after this date (YYYY-MM-DD)")
    parser.add_argument("--include-incomplete", action="store_true",
                        help="Also pull incomplete submissions")
    parser.add_argument("--list", action="store_true",
                        help="List the forms available on the server")
    parser.add_argument("--stats", action="store_true",
                        help="Show recorded submission statistics")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Echo log lines to the console too")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logger(config.log_dir, config.log_level, config.log_file, verbose=args.verbose)
    if args.include_incomplete:
        config.pull.include_incomplete = True

    if args.list:
        list_forms(config)
        return

    db = Database(config.db_path)
    try:
        if args.stats:
            show_stats(db)
            return

        if not config.server.url:
            raise SystemExit("No server url configured (server.url or AGGREGATE_URL)")

        print("Aggregate Pull")
        print(f"Server: {config.server.url}")
        print(f"Storage directory: {config.storage_dir}")

        run_pull(
            config, db, args.form,
            resume_last_pull=config.pull.resume_last_pull and not args.no_resume,
            start_from_date=args.start_from_date,
        )
        show_stats(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
