import argparse
import json
import sys

from pg_cloner.domain import CloneOptions, CloneType, JobState, SchemaExportOptions
from pg_cloner.events import CLONE_PROGRESS, SCHEMA_PROGRESS, default_bus
from pg_cloner.logging import LoggerFactory, setup_logging
from pg_cloner.storage import inspection
from pg_cloner.storage.clone import submit_clone
from pg_cloner.storage.exceptions import ClonerError
from pg_cloner.storage.schema import submit_schema_export
from pg_cloner.storage.store import default_history_store
from pg_cloner.tools import locator

SCHEMA_CATEGORIES = (
    "comments",
    "indexes",
    "constraints",
    "triggers",
    "sequences",
    "types",
    "functions",
    "views",
)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pg-cloner",
        description="Clone, back up and export PostgreSQL databases",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every line of tool output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    clone = subparsers.add_parser("clone", help="Clone one profile's database into another")
    clone.add_argument("--source", required=True, help="Source profile id")
    clone.add_argument("--destination", required=True, help="Destination profile id")
    clone.add_argument(
        "--type",
        dest="clone_type",
        choices=[clone_type.value for clone_type in CloneType],
        default=CloneType.BOTH.value,
    )
    clone.add_argument("--clean", action="store_true", help="Clean the destination first")
    clone.add_argument("--backup", action="store_true", help="Back up the destination first")
    clone.add_argument(
        "--exclude-table",
        dest="exclude_tables",
        action="append",
        default=[],
        metavar="TABLE",
    )

    schema = subparsers.add_parser("schema", help="Export a database schema")
    schema.add_argument("--profile", required=True, help="Profile id")
    schema.add_argument("--schema", dest="schemas", action="append", default=[])
    schema.add_argument("--table", dest="tables", action="append", default=[])
    for category in SCHEMA_CATEGORIES:
        schema.add_argument(
            f"--no-{category}",
            dest=f"include_{category}",
            action="store_false",
            help=f"Leave {category} out of the export",
        )
    schema.add_argument("--output", help="Write the schema to this file instead of stdout")

    history = subparsers.add_parser("history", help="Show or clear clone history")
    history.add_argument("--id", dest="entry_id", help="Show one entry with its log")
    history.add_argument("--clear", action="store_true", help="Delete all history")

    check = subparsers.add_parser("test", help="Test a profile's connection")
    check.add_argument("--profile", required=True, help="Profile id")

    tables = subparsers.add_parser("tables", help="List a profile's schemas and tables")
    tables.add_argument("--profile", required=True, help="Profile id")
    tables.add_argument("--schema", help="Only list tables in this schema")

    subparsers.add_parser("tools", help="Show the PostgreSQL client tools in use")
    return parser


def _print_progress(progress, file=None):
    print(f"[{progress.progress:3d}%] {progress.message}", file=file)


def _wait(job):
    try:
        job.wait()
    except KeyboardInterrupt:
        job.cancel()
        print("Cancelling after the current stage...")
        job.wait()
    return job.state is JobState.COMPLETED


def run_clone(args):
    options = CloneOptions(
        source_id=args.source,
        destination_id=args.destination,
        clone_type=CloneType.parse(args.clone_type),
        clean_destination=args.clean,
        create_backup=args.backup,
        exclude_tables=tuple(args.exclude_tables),
    )
    unsubscribe = default_bus.subscribe(CLONE_PROGRESS, _print_progress)
    try:
        job = submit_clone(options)
        print(f"Clone started: {job.id}")
        return 0 if _wait(job) else 1
    finally:
        unsubscribe()


def run_schema(args):
    options = SchemaExportOptions(
        profile_id=args.profile,
        schemas=frozenset(args.schemas),
        tables=frozenset(args.tables),
        **{
            f"include_{category}": getattr(args, f"include_{category}")
            for category in SCHEMA_CATEGORIES
        },
    )
    # progress goes to stderr so stdout can carry the schema itself
    unsubscribe = default_bus.subscribe(
        SCHEMA_PROGRESS,
        lambda progress: _print_progress(progress, file=sys.stderr),
    )
    try:
        job = submit_schema_export(options, output_path=args.output)
        if not _wait(job):
            return 1
    finally:
        unsubscribe()
    if not args.output:
        sys.stdout.write(job.result)
    return 0


def run_history(args):
    store = default_history_store()
    if args.clear:
        store.clear()
        print("History cleared")
        return 0
    if args.entry_id:
        entry = store.get(args.entry_id)
        if entry is None:
            print(f"No history entry with id {args.entry_id}", file=sys.stderr)
            return 1
        print(json.dumps(entry.to_dict(), indent=2))
        return 0
    entries = store.list()
    if not entries:
        print("No clone history")
        return 0
    for entry in entries:
        duration = f"{entry.duration}s" if entry.duration is not None else "-"
        print(
            f"{entry.started_at:%Y-%m-%d %H:%M:%S}  {entry.status.value:<9}  "
            f"{entry.clone_type.value:<9}  {entry.source_name} -> {entry.destination_name}  "
            f"{duration}  {entry.id}"
        )
    return 0


def run_tools(args):
    found = True
    for name in locator.TOOL_NAMES:
        path = locator.locate(name)
        if path is None:
            found = False
            print(f"{name:<11} not found")
        else:
            print(f"{name:<11} {path}")
    version = locator.client_version()
    if version:
        print(f"Client version: {version}")
    return 0 if found else 1


def _print_tables(tables):
    for table in tables:
        print(
            f"{table.qualified_name:<40} {table.row_count:>12} rows  "
            f"{inspection.human_size(table.size):>9}"
        )


def run_test(args):
    info = inspection.test_connection_by_id(args.profile)
    print("Connection successful")
    print(f"Server: {info.version}")
    print(f"Database size: {inspection.human_size(info.total_size)}")
    print(f"Tables: {len(info.tables)}")
    return 0


def run_tables(args):
    structure = inspection.get_database_structure(args.profile)
    if args.schema:
        if args.schema not in {schema.name for schema in structure.schemas}:
            print(f"No schema named {args.schema}", file=sys.stderr)
            return 1
        _print_tables(structure.tables_in(args.schema))
        return 0
    for schema in structure.schemas:
        print(f"{schema.name} ({schema.table_count} tables)")
    print()
    _print_tables(structure.tables)
    return 0


COMMANDS = {
    "clone": run_clone,
    "schema": run_schema,
    "history": run_history,
    "tools": run_tools,
    "test": run_test,
    "tables": run_tables,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()
    try:
        return COMMANDS[args.command](args)
    except ClonerError as error:
        log.error(str(error))
        return 1


if __name__ == "__main__":
    sys.exit(main())
