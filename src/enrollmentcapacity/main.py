#!/usr/bin/env python3
"""
Enrollment Capacity - Main CLI Entry Point

Command-line interface for class waitlists, enrollment requests and
department section planning. Students are notified of offers and decisions
via Telegram when a bot token is configured.

Usage:
    enrollcap class add CLASS --name NAME --capacity N [--type TYPE]
    enrollcap class list [--department DEPT]
    enrollcap class instructor INSTRUCTOR --name NAME [--department DEPT]
    enrollcap invite CLASS STUDENT --by INSTRUCTOR [--days N]
    enrollcap accept-invite INVITATION STUDENT
    enrollcap join STUDENT CLASS [--priority N]
    enrollcap leave STUDENT CLASS
    enrollcap respond STUDENT CLASS {accept,decline}
    enrollcap status STUDENT [CLASS ...]
    enrollcap show CLASS [--notify]
    enrollcap request STUDENT CLASS [--justification TEXT]
    enrollcap approve REQUEST --by INSTRUCTOR
    enrollcap deny REQUEST --by INSTRUCTOR --reason TEXT
    enrollcap pending [--class CLASS]
    enrollcap drop STUDENT CLASS [--reason TEXT] [--no-promote]
    enrollcap bulk CLASS [STUDENT ...] [--file PATH] --by USER
    enrollcap sweep [--once] [--cycles N] [--history N]
    enrollcap plan DEPARTMENT [--optimize] [--export CSV] [--send]
    enrollcap db stats
"""

import argparse
import asyncio
import sys

from .cli import (
    BulkCommand,
    ClassCommands,
    DatabaseCommands,
    DropCommand,
    PlanCommand,
    RequestCommands,
    SweepCommand,
    WaitlistCommands,
)
from .core import get_logger, setup_logging
from .models import EnrollmentType


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="enrollcap",
        description="Enrollment Capacity - Waitlists, enrollment requests and section planning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  enrollcap class add CS101 --name "Intro" --capacity 30 --department CS
  enrollcap join S1001 CS101 --priority 5    # Join a waitlist with priority
  enrollcap respond S1001 CS101 accept       # Accept an open offer
  enrollcap show CS101                       # Show a class waitlist
  enrollcap request S1001 CS501 --justification "Thesis topic"
  enrollcap approve <request-id> --by I42    # Approve a restricted request
  enrollcap drop S2002 CS101                 # Drop and offer the freed seat
  enrollcap bulk CS101 S1 S2 S3 --by admin   # Enroll several students
  enrollcap sweep --once                     # One maintenance sweep
  enrollcap plan CS --optimize --export plan.csv
  enrollcap db stats                         # Show database statistics

Debug Mode:
  Use --debug with any command to enable verbose output.

Telegram Control:
  Use --no-telegram to log notifications instead of sending them.
        """,
    )

    # Global options
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode with verbose output",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging level (default: INFO)",
    )
    parser.add_argument(
        "--db",
        type=str,
        metavar="PATH",
        help="Database file (default: from settings.toml)",
    )
    parser.add_argument(
        "--no-telegram",
        action="store_true",
        help="Log notifications instead of sending them via Telegram",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        metavar="COMMAND",
    )

    # Class catalogue
    class_parser = subparsers.add_parser(
        "class",
        help="Manage classes and instructors",
    )
    class_subparsers = class_parser.add_subparsers(
        dest="class_command",
        help="Class commands",
        metavar="CLASS_COMMAND",
    )
    class_add_parser = class_subparsers.add_parser("add", help="Create or update a class")
    class_add_parser.add_argument("class_id", metavar="class", help="Class id")
    class_add_parser.add_argument("--name", required=True, help="Class name")
    class_add_parser.add_argument("--capacity", type=int, required=True, help="Seats")
    class_add_parser.add_argument(
        "--waitlist",
        type=int,
        default=10,
        help="Waitlist capacity (default: 10)",
    )
    class_add_parser.add_argument(
        "--type",
        dest="enrollment_type",
        choices=[t.value for t in EnrollmentType],
        default=EnrollmentType.OPEN.value,
        help="Enrollment type (default: open)",
    )
    class_add_parser.add_argument(
        "--enrolled",
        type=int,
        default=0,
        help="Current enrollment for a new class (default: 0)",
    )
    class_add_parser.add_argument("--code", help="Section code shown in reports")
    class_add_parser.add_argument("--course", help="Course code used for planning")
    class_add_parser.add_argument("--department", help="Department id")
    class_add_parser.add_argument("--instructor", help="Instructor id")

    class_list_parser = class_subparsers.add_parser("list", help="List classes")
    class_list_parser.add_argument("--department", help="Only classes of this department")

    instructor_parser = class_subparsers.add_parser(
        "instructor", help="Create or update an instructor"
    )
    instructor_parser.add_argument("instructor_id", metavar="instructor", help="Instructor id")
    instructor_parser.add_argument("--name", required=True, help="Instructor name")
    instructor_parser.add_argument("--department", help="Department id")

    # Invitations
    invite_parser = subparsers.add_parser(
        "invite",
        help="Invite a student to an invitation-only class",
    )
    invite_parser.add_argument("class_id", metavar="class", help="Class id")
    invite_parser.add_argument("student", help="Student id")
    invite_parser.add_argument(
        "--by", dest="invited_by", required=True, help="Inviting instructor id"
    )
    invite_parser.add_argument(
        "--days",
        type=int,
        default=14,
        help="Days the invitation stays valid (default: 14)",
    )

    accept_invite_parser = subparsers.add_parser(
        "accept-invite",
        help="Accept an invitation and enroll",
    )
    accept_invite_parser.add_argument("invitation_id", metavar="invitation", help="Invitation id")
    accept_invite_parser.add_argument("student", help="Student id")

    # Waitlist commands
    join_parser = subparsers.add_parser(
        "join",
        help="Add a student to a class waitlist",
        description="Add a student to a class waitlist in priority order",
    )
    join_parser.add_argument("student", help="Student id")
    join_parser.add_argument("class_id", metavar="class", help="Class id")
    join_parser.add_argument(
        "--priority",
        type=int,
        default=0,
        help="Waitlist priority, higher goes first (default: 0)",
    )

    leave_parser = subparsers.add_parser(
        "leave",
        help="Remove a student from a class waitlist",
    )
    leave_parser.add_argument("student", help="Student id")
    leave_parser.add_argument("class_id", metavar="class", help="Class id")

    respond_parser = subparsers.add_parser(
        "respond",
        help="Accept or decline a waitlist offer",
    )
    respond_parser.add_argument("student", help="Student id")
    respond_parser.add_argument("class_id", metavar="class", help="Class id")
    respond_parser.add_argument("response", choices=["accept", "decline"])

    status_parser = subparsers.add_parser(
        "status",
        help="Show a student's waitlist positions",
        description="Show position, probability and wait estimate per waitlist",
    )
    status_parser.add_argument("student", help="Student id")
    status_parser.add_argument(
        "classes",
        nargs="*",
        help="Class id(s); all of the student's waitlists when omitted",
    )

    show_parser = subparsers.add_parser(
        "show",
        help="Show a class waitlist",
    )
    show_parser.add_argument("class_id", metavar="class", help="Class id")
    show_parser.add_argument(
        "--notify",
        action="store_true",
        help="Send position updates to the front of the queue",
    )

    # Enrollment requests
    request_parser = subparsers.add_parser(
        "request",
        help="Request enrollment in a class",
        description="Enroll, waitlist or file an approval request depending on the class",
    )
    request_parser.add_argument("student", help="Student id")
    request_parser.add_argument("class_id", metavar="class", help="Class id")
    request_parser.add_argument(
        "--justification",
        type=str,
        help="Reason shown to the instructor for restricted classes",
    )

    approve_parser = subparsers.add_parser(
        "approve",
        help="Approve a pending enrollment request",
    )
    approve_parser.add_argument("request_id", metavar="request", help="Request id")
    approve_parser.add_argument(
        "--by", dest="approver", required=True, help="Approving instructor id"
    )

    deny_parser = subparsers.add_parser(
        "deny",
        help="Deny a pending enrollment request",
    )
    deny_parser.add_argument("request_id", metavar="request", help="Request id")
    deny_parser.add_argument(
        "--by", dest="approver", required=True, help="Denying instructor id"
    )
    deny_parser.add_argument("--reason", required=True, help="Reason for the denial")

    pending_parser = subparsers.add_parser(
        "pending",
        help="List pending enrollment requests",
    )
    pending_parser.add_argument(
        "--class", dest="class_id", type=str, help="Only requests for this class"
    )

    # Drops and bulk enrollment
    drop_parser = subparsers.add_parser(
        "drop",
        help="Drop an enrollment",
        description="Drop an enrollment and offer the freed seat to the waitlist",
    )
    drop_parser.add_argument("student", help="Student id")
    drop_parser.add_argument("class_id", metavar="class", help="Class id")
    drop_parser.add_argument("--reason", type=str, help="Drop reason")
    drop_parser.add_argument("--by", dest="performed_by", type=str, help="Acting user")
    drop_parser.add_argument(
        "--no-promote",
        action="store_true",
        help="Do not offer the freed seat right away",
    )

    bulk_parser = subparsers.add_parser(
        "bulk",
        help="Enroll several students into one class",
    )
    bulk_parser.add_argument("class_id", metavar="class", help="Class id")
    bulk_parser.add_argument("students", nargs="*", help="Student id(s)")
    bulk_parser.add_argument(
        "--file",
        type=str,
        metavar="PATH",
        help="File with one student id per line",
    )
    bulk_parser.add_argument(
        "--by", dest="performed_by", required=True, help="Acting user"
    )

    # Maintenance
    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Run waitlist maintenance",
        description="Expire offers, send reminders and offer free seats",
    )
    sweep_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    sweep_parser.add_argument(
        "--cycles",
        type=int,
        metavar="N",
        help="Stop after N sweeps",
    )
    sweep_parser.add_argument(
        "--history",
        type=int,
        metavar="N",
        help="Show the last N recorded sweeps instead of sweeping",
    )

    # Planning
    plan_parser = subparsers.add_parser(
        "plan",
        help="Recommend section counts for a department",
    )
    plan_parser.add_argument("department", help="Department id")
    plan_parser.add_argument(
        "--optimize",
        action="store_true",
        help="Adjust plans to available resources",
    )
    plan_parser.add_argument(
        "--export",
        type=str,
        metavar="CSV",
        help="Write the plans to a CSV file",
    )
    plan_parser.add_argument(
        "--send",
        action="store_true",
        help="Send the plan report via Telegram",
    )

    # Database commands
    db_parser = subparsers.add_parser(
        "db",
        help="Database operations",
    )
    db_subparsers = db_parser.add_subparsers(
        dest="db_command",
        help="Database commands",
        metavar="DB_COMMAND",
    )
    db_subparsers.add_parser("stats", help="Show database statistics")

    return parser


def _command_options(args) -> dict:
    return {
        "debug": args.debug,
        "db_path": args.db,
        "no_telegram": args.no_telegram,
    }


async def handle_class_command(args) -> bool:
    """Handle class add, list and instructor."""
    command = ClassCommands(**_command_options(args))
    if args.class_command == "add":
        return await command.add(
            args.class_id,
            args.name,
            args.capacity,
            waitlist_capacity=args.waitlist,
            enrollment_type=args.enrollment_type,
            current_enrollment=args.enrolled,
            code=args.code,
            course_code=args.course,
            department_id=args.department,
            instructor_id=args.instructor,
        )
    if args.class_command == "list":
        return await command.list_classes(args.department)
    if args.class_command == "instructor":
        return await command.add_instructor(
            args.instructor_id, args.name, args.department
        )
    print("❌ Invalid class command")
    return False


async def handle_invitation_command(args) -> bool:
    command = ClassCommands(**_command_options(args))
    if args.command == "invite":
        return await command.invite(
            args.class_id, args.student, args.invited_by, valid_days=args.days
        )
    return await command.accept_invitation(args.invitation_id, args.student)


async def handle_waitlist_command(args) -> bool:
    """Handle join, leave, respond, status and show."""
    command = WaitlistCommands(**_command_options(args))
    if args.command == "join":
        return await command.join(args.student, args.class_id, priority=args.priority)
    if args.command == "leave":
        return await command.leave(args.student, args.class_id)
    if args.command == "respond":
        return await command.respond(args.student, args.class_id, args.response)
    if args.command == "status":
        return await command.status(args.student, args.classes)
    return await command.show(args.class_id, notify=args.notify)


async def handle_request_command(args) -> bool:
    """Handle request, approve, deny and pending."""
    command = RequestCommands(**_command_options(args))
    if args.command == "request":
        return await command.request(
            args.student, args.class_id, justification=args.justification
        )
    if args.command == "approve":
        return await command.approve(args.request_id, args.approver)
    if args.command == "deny":
        return await command.deny(args.request_id, args.approver, args.reason)
    return await command.pending(args.class_id)


async def handle_drop_command(args) -> bool:
    command = DropCommand(**_command_options(args))
    return await command.run(
        args.student,
        args.class_id,
        reason=args.reason,
        performed_by=args.performed_by,
        promote=not args.no_promote,
    )


async def handle_bulk_command(args) -> bool:
    command = BulkCommand(**_command_options(args))
    return await command.run(
        args.class_id, args.students, args.performed_by, file_path=args.file
    )


async def handle_sweep_command(args) -> bool:
    command = SweepCommand(**_command_options(args))
    if args.history:
        return await command.history(args.history)
    try:
        return await command.run(once=args.once, max_cycles=args.cycles)
    except KeyboardInterrupt:
        return True  # Normal exit for the sweep loop


async def handle_plan_command(args) -> bool:
    command = PlanCommand(**_command_options(args))
    return await command.run(
        args.department,
        optimize=args.optimize,
        export_path=args.export,
        send=args.send,
    )


async def handle_db_command(args) -> bool:
    """Handle database commands."""
    command = DatabaseCommands(**_command_options(args))
    if args.db_command == "stats":
        return await command.stats()
    print("❌ Invalid database command")
    return False


COMMAND_HANDLERS = {
    "class": handle_class_command,
    "invite": handle_invitation_command,
    "accept-invite": handle_invitation_command,
    "join": handle_waitlist_command,
    "leave": handle_waitlist_command,
    "respond": handle_waitlist_command,
    "status": handle_waitlist_command,
    "show": handle_waitlist_command,
    "request": handle_request_command,
    "approve": handle_request_command,
    "deny": handle_request_command,
    "pending": handle_request_command,
    "drop": handle_drop_command,
    "bulk": handle_bulk_command,
    "sweep": handle_sweep_command,
    "plan": handle_plan_command,
    "db": handle_db_command,
}


async def async_main(argv=None) -> int:
    """Main async entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Set up logging based on arguments
    log_level = "DEBUG" if args.debug else args.log_level
    setup_logging(level=log_level, enable_console=True, enable_file=True)

    logger = get_logger(__name__)
    logger.info(f"Starting Enrollment Capacity CLI with command: {args.command}")

    if args.debug:
        print(f"🔍 DEBUG MODE ENABLED - Log level: {log_level}")

    handler = COMMAND_HANDLERS.get(args.command)
    if handler is None:
        # No command provided, show help
        parser.print_help()
        return 1

    try:
        success = await handler(args)
        return 0 if success else 1
    except KeyboardInterrupt:
        print("\n\n👋 Operation interrupted by user")
        logger.info("Operation interrupted by user")
        return 130  # Standard exit code for Ctrl+C
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        logger.error(f"Unexpected error in CLI: {e}")
        if args.debug:
            import traceback

            print("\n🔍 DEBUG: Full traceback:")
            traceback.print_exc()
        return 1


def cli_main() -> None:
    """Entry point for the CLI application."""
    try:
        exit_code = asyncio.run(async_main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\n\n👋 Application interrupted")
        sys.exit(130)
    except Exception as e:
        print(f"\n❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
