"""Command-line entry point for registering a record from a draft file.

Reads a YAML draft, feeds it through the same wizard or registration form
used interactively, and either prints the assembled record (dry run, the
default) or submits it to the records API.

Draft files hold the record's fields. Flat fields are top-level keys; nested
sections (``address``, ``class_info``, ``parent_details``) are mappings.
Three keys are handled specially::

    kind: student                # student, staff, teacher, driver, route, vehicle
    photo: photos/asha.jpg       # uploaded before submit, relative to the draft
    transport:
      is_using_bus: true
      bus_id: 65f0c1...          # vehicle id from the catalog
      stop_name: Main Gate       # matched against the route's stops
      latitude: 12.97            # only used for a new stop
      longitude: 77.59

Route and vehicle drafts are validated as whole records.

**Exit Codes:**
- 0: Record is valid (dry run) or was accepted by the records API
- 1: Validation failed, the records API rejected the record, or the
  configuration/draft could not be read
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml

from .api_client import ApiError, RecordsClient
from .config_loader import DEFAULT_CONFIG_PATH, load_config
from .enums import RecordKind, Step
from .registration import EmployeeForm
from .session import FormSession
from .transport import validate_route, validate_vehicle
from .utils import string_or_empty
from .wizard import EnrollmentWizard

LOG = logging.getLogger(__name__)

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"

# Itinerary records are not people; they are validated whole
CATALOG_RESOURCES = {"route": "routes", "vehicle": "buses"}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    kinds = sorted(RecordKind.all_values() | set(CATALOG_RESOURCES))
    parser = argparse.ArgumentParser(
        description="Validate a registration draft and optionally submit it",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s drafts/asha.yaml
  %(prog)s drafts/ravi.yaml --kind teacher --submit --token $TOKEN
        """,
    )
    parser.add_argument("draft", type=Path, help="YAML draft file")
    parser.add_argument(
        "--kind",
        choices=kinds,
        default=None,
        help="Record kind (default: the draft's 'kind' key, else student)",
    )
    parser.add_argument(
        "--submit",
        action="store_true",
        help="Submit to the records API instead of printing the record",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help=f"Output directory for logs and records (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument("--token", default=None, help="Bearer token for the records API")
    return parser.parse_args(argv)


def configure_logging(output_dir: Path, run_id: str) -> Path:
    """Log everything to a run file and warnings to the console.

    Parameters
    ----------
    output_dir : Path
        Root output directory where the logs subdirectory will be created.
    run_id : str
        Unique run identifier used in the log filename.

    Returns
    -------
    Path
        Path to the log file.
    """
    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"enroll_{run_id}.log"

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    return log_path


def load_draft(path: Path) -> Dict[str, Any]:
    """Read a draft file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file does not contain a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Draft file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Draft root must be a mapping, got {type(data).__name__}")
    return data


def _as_text(value: Any) -> str:
    # YAML turns unquoted dates and numbers into native values
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return string_or_empty(value)


def apply_values(session: FormSession, values: Mapping[str, Any]) -> None:
    """Copy draft file values into a form session.

    Raises
    ------
    ValueError
        If a key does not name a field of the form.
    """
    values = dict(values)
    transport = values.pop("transport", None)
    subjects = values.pop("subjects", None)

    for key, value in values.items():
        if isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                session.set_field(f"{key}.{sub_key}", _as_text(sub_value))
        else:
            session.set_field(key, _as_text(value))

    if subjects is not None:
        if not isinstance(session, EmployeeForm):
            raise ValueError("Only staff and teacher drafts have subjects")
        session.set_subjects(subjects)

    if transport is not None:
        if not session.uses_transport:
            raise ValueError(f"{session.kind.value} drafts have no transport section")
        apply_transport(session, transport)


def apply_transport(session: FormSession, transport: Mapping[str, Any]) -> None:
    """Replay a transport selection: vehicle first, then the stop."""
    if not transport.get("is_using_bus"):
        session.set_transport_enabled(False)
        return

    session.set_transport_enabled(True)
    session.select_vehicle(_as_text(transport.get("bus_id")))

    stop_name = _as_text(transport.get("stop_name"))
    latitude = _as_text(transport.get("latitude"))
    longitude = _as_text(transport.get("longitude"))
    if transport.get("is_new_stop"):
        session.author_stop(stop_name, latitude, longitude)
    elif stop_name:
        if session.select_stop(stop_name) is None and (latitude or longitude):
            session.author_stop(stop_name, latitude, longitude)


def attach_photo(session: FormSession, photo: Any, draft_path: Path) -> bool:
    """Upload the draft's photo file, if any; returns False on failure."""
    photo_path = Path(str(photo))
    if not photo_path.is_absolute():
        photo_path = draft_path.parent / photo_path
    if not photo_path.exists():
        print(f"Photo not found: {photo_path}", file=sys.stderr)
        return False
    return session.attach_photo(photo_path.read_bytes(), photo_path.name)


def print_errors(title: str, errors: Mapping[str, str]) -> None:
    print(f"❌ {title}: {len(errors)} error(s)")
    for path, message in errors.items():
        print(f"  - {path}: {message}")


def print_review(review: Mapping[str, str]) -> None:
    print()
    print(f"{'=' * 60}")
    print("Review")
    print(f"{'=' * 60}")
    for key, value in review.items():
        label = key.replace("_", " ").capitalize()
        print(f"  {label:<16} {value}")
    print()


def write_record(output_dir: Path, kind: str, run_id: str, record: Mapping[str, Any]) -> Path:
    """Write an assembled record as JSON under ``<output>/records``."""
    records_dir = output_dir / "records"
    records_dir.mkdir(parents=True, exist_ok=True)
    record_path = records_dir / f"{kind}_{run_id}.json"
    record_path.write_text(
        json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8"
    )
    return record_path


def _finish(
    session: FormSession,
    args: argparse.Namespace,
    run_id: str,
) -> int:
    record = session.assemble_record()
    record_path = write_record(args.output_dir, session.kind.value, run_id, record)
    print(f"📄 Assembled record: {record_path}")

    if not args.submit:
        print(json.dumps(record, indent=2, ensure_ascii=False))
        return 0

    result = session.submit()
    if result.ok:
        print(f"✅ {session.kind.value.capitalize()} record saved.")
        return 0
    if result.errors:
        print_errors("Submit blocked", result.errors)
    print(f"❌ {result.message}", file=sys.stderr)
    if result.retryable:
        print("Edit the draft and submit again.", file=sys.stderr)
    return 1


def run_student(
    data: Dict[str, Any],
    args: argparse.Namespace,
    config: Dict[str, Any],
    client: Optional[RecordsClient],
    run_id: str,
) -> int:
    photo = data.pop("photo", None)
    wizard = EnrollmentWizard(client=client, config=config)
    if client is not None:
        wizard.load_references()

    apply_values(wizard, data)
    if photo and client is not None and not attach_photo(wizard, photo, args.draft):
        print("⚠️  Photo was not attached.")
    elif photo and client is None:
        print("Photo upload skipped in dry run.")

    while not wizard.is_last_step:
        outcome = wizard.advance()
        if not outcome.advanced:
            print_errors(f"Step {outcome.step} ({Step(outcome.step).title})", outcome.errors)
            return 1
        print(f"✅ Step {outcome.step - 1} complete.")

    transport_errors = wizard.transport_errors()
    if transport_errors:
        print_errors(f"Step {int(Step.TRANSPORT)} ({Step.TRANSPORT.title})", transport_errors)
        return 1

    print_review(wizard.review())
    return _finish(wizard, args, run_id)


def run_employee(
    kind: RecordKind,
    data: Dict[str, Any],
    args: argparse.Namespace,
    config: Dict[str, Any],
    client: Optional[RecordsClient],
    run_id: str,
) -> int:
    photo = data.pop("photo", None)
    form = EmployeeForm(kind, client=client, config=config)
    if client is not None:
        form.load_references()

    apply_values(form, data)
    if photo and client is not None and not attach_photo(form, photo, args.draft):
        print("⚠️  Photo was not attached.")
    elif photo and client is None:
        print("Photo upload skipped in dry run.")

    errors = form.validate()
    if errors:
        print_errors(f"{kind.value.capitalize()} registration", errors)
        return 1
    return _finish(form, args, run_id)


def run_catalog(
    kind: str,
    data: Dict[str, Any],
    args: argparse.Namespace,
    client: Optional[RecordsClient],
    run_id: str,
) -> int:
    if kind == "route":
        errors, record = validate_route(data)
    else:
        errors, record = validate_vehicle(data), dict(data)
    if errors:
        print_errors(f"{kind.capitalize()} validation", errors)
        return 1

    record_path = write_record(args.output_dir, kind, run_id, record)
    print(f"📄 Validated {kind}: {record_path}")
    if client is None:
        return 0

    try:
        client.create_record(CATALOG_RESOURCES[kind], record)
    except ApiError as exc:
        print(f"❌ {exc.message}", file=sys.stderr)
        return 1
    print(f"✅ {kind.capitalize()} saved.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Validate, and optionally submit, one draft file."""
    args = parse_args(argv)
    args.output_dir = args.output_dir.resolve()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")

    try:
        config = load_config(args.config)
        data = load_draft(args.draft)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log_path = configure_logging(args.output_dir, run_id)
    file_kind = data.pop("kind", None)
    kind_name = args.kind or file_kind or RecordKind.STUDENT.value
    LOG.info("Processing %s draft %s", kind_name, args.draft)

    client = RecordsClient.from_config(config, token=args.token) if args.submit else None
    try:
        if kind_name in CATALOG_RESOURCES:
            return run_catalog(kind_name, data, args, client, run_id)
        kind = RecordKind.from_string(kind_name)
        if kind is RecordKind.STUDENT:
            return run_student(data, args, config, client, run_id)
        return run_employee(kind, data, args, config, client, run_id)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if client is not None:
            client.close()
        print(f"Log written to {log_path}")


if __name__ == "__main__":
    sys.exit(main())
