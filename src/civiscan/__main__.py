"""
CiviScan - Entry Point

Command line front end for the check-in core: configure a connection,
list events and rosters, and run a scanner fed from standard input
(one decoded code per line, e.g. piped from a barcode reader).
"""

import asyncio
import argparse
import logging
import sys

from .config import load_config
from .core.client import detect_rest_path
from .core.credentials import ApiKey, CredentialKind
from .core.errors import CiviScanError
from .scanner import FeedbackKind, Notifier, ScanState
from .services.bootstrap import bootstrap_from_url
from .services.events import list_events
from .session import CheckInSession

logger = logging.getLogger(__name__)


class ConsoleNotifier(Notifier):
    """Terminal bell stands in for sound and vibration"""

    def notify(self, kind: FeedbackKind) -> None:
        if kind in (FeedbackKind.ERROR, FeedbackKind.WARNING):
            sys.stdout.write("\a")
            sys.stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="civiscan",
        description="CiviCRM event check-in",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Save a connection (APIv4)
  civiscan configure --url https://crm.example.org --api-key KEY

  # APIv3 with rest.php auto-detection
  civiscan configure --url https://crm.example.org --api-key KEY --site-key SITE --api-version 3 --detect-rest-path

  # Apply a magic link or config link
  civiscan bootstrap "https://crm.example.org/scan/?token=eyJ..."

  # Check participants in, one code per line
  civiscan scan 7 --auto-validate < codes.txt
"""
    )

    parser.add_argument('--config', '-c', help='Path to civiscan.yaml')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    configure = sub.add_parser('configure', help='Save connection settings and API key')
    configure.add_argument('--url', required=True)
    configure.add_argument('--api-key', required=True)
    configure.add_argument('--api-version', default='4', choices=['3', '4'])
    configure.add_argument('--site-key', default='')
    configure.add_argument('--rest-path', default='')
    configure.add_argument('--detect-rest-path', action='store_true', help='Probe known APIv3 rest.php locations')

    sub.add_parser('check', help='Test the saved connection')

    events = sub.add_parser('events', help='List active events')
    events.add_argument('--past', action='store_true', help='Include past events')

    roster = sub.add_parser('roster', help='Show participants of an event')
    roster.add_argument('event_id', type=int)
    roster.add_argument('--toggle', type=int, metavar='PARTICIPANT_ID', help='Toggle attended status')

    scan = sub.add_parser('scan', help='Check participants in from codes on stdin')
    scan.add_argument('event_id', type=int)
    scan.add_argument('--auto-validate', action='store_true', default=None, help='Check in without confirmation')
    scan.add_argument('--debounce-ms', type=int, help='Minimum gap between accepted codes (default from config)')

    bootstrap = sub.add_parser('bootstrap', help='Apply a magic link or config link')
    bootstrap.add_argument('url')

    sub.add_parser('logout', help='Forget all settings and credentials')

    return parser


async def cmd_configure(session: CheckInSession, args) -> int:
    rest_path = args.rest_path
    if args.api_version == '3' and args.detect_rest_path:
        rest_path = await detect_rest_path(session.client, args.url, args.api_key)
        if not rest_path:
            print("❌ No APIv3 endpoint found")
            return 1
        print(f"Found APIv3 endpoint: {rest_path}")

    session.settings.save(
        url=args.url,
        api_version=args.api_version,
        site_key=args.site_key,
        rest_path=rest_path,
    )
    session.credentials.set(CredentialKind.API_KEY, ApiKey(key=args.api_key, base_url=args.url))
    print("✅ Settings saved")
    return 0


async def cmd_check(session: CheckInSession, args) -> int:
    contact = await session.client.get_current_contact()
    if contact is None:
        print("❌ Connection failed")
        return 1
    print(f"✅ Connected as {contact.get('display_name', '?')}")
    return 0


async def cmd_events(session: CheckInSession, args) -> int:
    show_past = args.past or session.config.roster.show_past_events
    for event in await list_events(session.client, show_past_events=show_past):
        start = event.start_date.strftime("%Y-%m-%d %H:%M") if event.start_date else "-"
        print(f"{event.id:>6}  {start}  {event.title}")
    return 0


async def cmd_roster(session: CheckInSession, args) -> int:
    roster = session.roster(args.event_id, can_write=await session.write_gate(args.event_id))
    try:
        await roster.refresh()
        if args.toggle is not None:
            participant = await roster.toggle(args.toggle)
            print(f"Participant {participant.id} status is now {participant.status_id}")
    finally:
        await roster.close()

    attended_status = session.config.statuses.attended
    for participant in roster.participants:
        mark = "x" if participant.is_attended(attended_status) else " "
        print(f"[{mark}] {participant.id:>6}  {participant.display_name}  {participant.email}")

    stats = roster.stats()
    print(f"\nTotal {stats.total}  Attended {stats.attended}  Remaining {stats.remaining}")
    return 0


async def _prompt(question: str) -> str:
    loop = asyncio.get_running_loop()
    print(question, end=" ", flush=True)
    return (await loop.run_in_executor(None, sys.stdin.readline)).strip().lower()


async def cmd_scan(session: CheckInSession, args) -> int:
    scanner = session.scanner(
        args.event_id,
        notifier=ConsoleNotifier(),
        can_write=await session.write_gate(args.event_id),
    )
    if args.auto_validate is not None:
        scanner.set_auto_validate(args.auto_validate)
    if args.debounce_ms is not None:
        scanner.debounce_ms = args.debounce_ms

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            code = line.strip()
            if not code:
                continue

            if not await scanner.submit(code):
                print(f"(ignored {code}: too soon after previous scan)")
                continue

            if scanner.state == ScanState.CONFIRMING:
                p = scanner.participant
                answer = await _prompt(f"Check in {p.display_name} <{p.email}>? [y/N]")
                if answer == "y":
                    await scanner.confirm()
                else:
                    scanner.cancel()
                    print("Cancelled")
                    continue

            if scanner.state == ScanState.SUCCESS:
                print(f"✅ Checked in: {scanner.participant.display_name}")
            elif scanner.state == ScanState.ALREADY_ATTENDED:
                print(f"⚠️  Already checked in: {scanner.participant.display_name}")
            elif scanner.state == ScanState.ERROR:
                print(f"❌ {scanner.error}")

            scanner.reset()
    finally:
        await scanner.close()
    return 0


async def cmd_bootstrap(session: CheckInSession, args) -> int:
    result = await bootstrap_from_url(args.url, session.client, session.settings, session.credentials)
    if result.kind == "none":
        print("No config or token parameter in URL")
        return 1
    print(f"{result.kind}: {result.status}")
    if result.target:
        print(f"Continue at: {result.target}")
    return 0 if result.ok else 1


async def cmd_logout(session: CheckInSession, args) -> int:
    session.logout()
    print("Logged out")
    return 0


COMMANDS = {
    'configure': cmd_configure,
    'check': cmd_check,
    'events': cmd_events,
    'roster': cmd_roster,
    'scan': cmd_scan,
    'bootstrap': cmd_bootstrap,
    'logout': cmd_logout,
}


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = load_config(args.config)
    session = CheckInSession(config)
    session.unauthorized.subscribe(lambda: print("\n❌ Session expired, please re-authenticate"))

    try:
        return await COMMANDS[args.command](session, args)
    except CiviScanError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"\n❌ Error: {e.message}")
        return 1
    finally:
        await session.close()


def run():
    """Console script entry point"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    run()
