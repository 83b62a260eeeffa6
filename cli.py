#!/usr/bin/env python3
"""Vision Coach CLI."""
from __future__ import annotations

import argparse
import json
import logging
import sys

from vision_coach.comms.gmail import EmailSender
from vision_coach.comms.router import MESSAGE_TYPES, URGENCIES, CommunicationRouter, RouteRequest
from vision_coach.comms.sms import AgentSmsService
from vision_coach.comms.telephony import TwilioGateway
from vision_coach.comms.voice import AgentVoiceService
from vision_coach.config import ConfigError, Settings, load_settings
from vision_coach.errors import AgentError, classify_error
from vision_coach.notifications import CheckinService
from vision_coach.outreach import OutreachProcessor
from vision_coach.reminders import ReminderDispatcher, ReminderProcessor, ReminderScheduler
from vision_coach.users import UserDirectory


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vision-coach",
        description="Run Vision Coach agent jobs and tools from the command line.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log progress to stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "schedule-reminders",
        help="Queue today's habit reminders for every opted-in user.",
    )
    subparsers.add_parser(
        "process-reminders",
        help="Send due habit reminders and goal check-ins.",
    )

    dispatch_parser = subparsers.add_parser(
        "dispatch-reminders",
        help="Send due generic scheduled reminders.",
    )
    dispatch_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum reminders to process (default 50, capped at 100).",
    )
    dispatch_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Mark reminders as sent without delivering anything.",
    )

    subparsers.add_parser(
        "process-outreach",
        help="Place due voice outreach calls.",
    )

    classify_parser = subparsers.add_parser(
        "classify-error",
        help="Show how an agent error code is classified.",
    )
    classify_parser.add_argument("code", help="Error code, e.g. RATE_LIMITED.")

    route_parser = subparsers.add_parser(
        "route",
        help="Route a coach message to a user.",
    )
    route_parser.add_argument("user_id", help="Coach user id.")
    route_parser.add_argument("content", help="Message text.")
    route_parser.add_argument(
        "--type",
        choices=MESSAGE_TYPES,
        default="generic",
        help="Message type; some types prefer a specific channel.",
    )
    route_parser.add_argument(
        "--urgency",
        choices=URGENCIES,
        default="medium",
        help="High urgency prefers SMS.",
    )

    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "classify-error":
        _print_json(classify_error(args.code).to_api_dict())
        return 0

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        if args.command == "schedule-reminders":
            return _cmd_schedule_reminders()
        if args.command == "process-reminders":
            return _cmd_process_reminders(settings)
        if args.command == "dispatch-reminders":
            return _cmd_dispatch_reminders(settings, args.batch_size, args.dry_run)
        if args.command == "process-outreach":
            return _cmd_process_outreach(settings)
        if args.command == "route":
            return _cmd_route(settings, args.user_id, args.content, args.type, args.urgency)
    except AgentError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


def _cmd_schedule_reminders() -> int:
    summary = ReminderScheduler().run()
    _print_json(summary.to_dict())
    return 0


def _cmd_process_reminders(settings: Settings) -> int:
    gateway = TwilioGateway(settings)
    users = UserDirectory()
    processor = ReminderProcessor(
        users=users,
        sms=AgentSmsService(gateway=gateway, users=users),
        voice=AgentVoiceService(gateway=gateway, users=users),
        email_sender=EmailSender(settings.email_account),
    )
    _print_json(processor.run().to_dict())
    return 0


def _cmd_dispatch_reminders(settings: Settings, batch_size: int | None, dry_run: bool) -> int:
    dispatcher = ReminderDispatcher(gateway=TwilioGateway(settings))
    summary = dispatcher.run(batch_size=batch_size, dry_run=dry_run)
    _print_json(summary.to_dict())
    return 0 if not summary.failed else 1


def _cmd_process_outreach(settings: Settings) -> int:
    summary = OutreachProcessor(gateway=TwilioGateway(settings)).run()
    _print_json(summary.to_dict())
    return 0 if not summary.failed else 1


def _cmd_route(settings: Settings, user_id: str, content: str, message_type: str, urgency: str) -> int:
    gateway = TwilioGateway(settings)
    email_sender = EmailSender(settings.email_account)
    users = UserDirectory()
    router = CommunicationRouter(
        users=users,
        sms=AgentSmsService(gateway=gateway, users=users),
        voice=AgentVoiceService(gateway=gateway, users=users),
        email_sender=email_sender,
        checkins=CheckinService(gateway=gateway, email_sender=email_sender, users=users),
    )
    result = router.route(
        RouteRequest(user_id=user_id, type=message_type, content=content, urgency=urgency)
    )
    _print_json(result.to_api_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
