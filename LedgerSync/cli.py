"""Command line front end.

Every command that reads or changes the ledger starts a session: the local state is
loaded, the remote state is pulled once when a remote url is configured, the command
runs, and background pushes are waited for before exiting.

Examples::

    ledgersync add expense 2024-01-01 食物 100 --note lunch
    ledgersync month 2024 1
    ledgersync toggle 12
    ledgersync sync
    ledgersync serve --port 8080

"""
import argparse
import datetime
import logging
import os
import sys
from typing import Callable, List, Optional

from PySide6 import QtCore

from .core import models
from .core.sync import SyncAPI
from .data import data
from .log import log
from .settings import lib
from .settings import locale
from .status import status

#: Commands that run without a ledger session
NO_SESSION_COMMANDS: List[str] = ['serve', 'auth']


def _confirm_prompt() -> bool:
    answer = input('Overwrite the remote store with the local data? [y/N] ')
    return answer.strip().lower() in ('y', 'yes')


def _format_amount(value: float) -> str:
    return locale.format_float(value, lib.settings['locale'])


def _print_transactions(transactions: List[models.Transaction]) -> None:
    if not transactions:
        print('No transactions.')
        return
    for t in transactions:
        label = models.type_to_label(t.type)
        note = f'  {t.note}' if t.note else ''
        print(f'{t.date}  {label}  {t.category}  {_format_amount(t.amount)}{note}  [{t.id}]')


def _report_push_failures() -> None:
    tank = log.get_tank()
    if tank is None:
        return
    failures = tank.get_logs(logging.ERROR, contains='Push #')
    if failures:
        print(f'Warning: {len(failures)} push(es) did not reach the remote store.', file=sys.stderr)


def cmd_list(api: SyncAPI, args: argparse.Namespace) -> int:
    if args.today:
        transactions = data.get_today_operations(api.state.transactions)
    elif args.date:
        transactions = data.get_day_transactions(api.state.transactions, args.date)
    else:
        transactions = api.state.transactions
    _print_transactions(transactions)
    return 0


def cmd_add(api: SyncAPI, args: argparse.Namespace) -> int:
    transaction = api.add_transaction(args.type, args.date, args.category, args.amount, note=args.note)
    print(f'Added {transaction.id}')
    return 0


def cmd_delete(api: SyncAPI, args: argparse.Namespace) -> int:
    removed = api.delete_transactions(args.ids)
    print(f'Deleted {removed} transaction(s).')
    return 0 if removed else 1


def cmd_categories(api: SyncAPI, args: argparse.Namespace) -> int:
    if args.action == 'add':
        api.add_category(args.type, args.name)
    elif args.action == 'remove':
        api.remove_category(args.type, args.name)

    for _type in ([args.type] if args.type else list(models.TransactionType)):
        print(f'{models.type_to_label(_type)}: {", ".join(api.state.categories(_type))}')
    return 0


def cmd_toggle(api: SyncAPI, args: argparse.Namespace) -> int:
    completed = api.toggle_savings_day(args.day)
    print(f'Day {args.day} {"completed" if completed else "cleared"}.')
    return 0


def cmd_savings(api: SyncAPI, args: argparse.Namespace) -> int:
    progress = data.get_savings_progress(api.state.savings)
    print(
        f'{_format_amount(progress["total"])} / {_format_amount(progress["target"])} '
        f'({progress["percent"]}%), {progress["completed"]} days completed, '
        f'{progress["remaining"]} remaining.'
    )
    return 0


def cmd_month(api: SyncAPI, args: argparse.Namespace) -> int:
    summary = data.get_month_summary(api.state.transactions, args.year, args.month)
    for day, net in sorted(summary.items()):
        print(f'{args.year:04d}-{args.month:02d}-{day:02d}  {_format_amount(net)}')

    totals = data.get_totals(api.state.transactions, args.year, args.month)
    print(
        f'Income {_format_amount(totals["income"])}, expense {_format_amount(totals["expense"])}, '
        f'net {_format_amount(totals["net"])}'
    )
    return 0


def cmd_sync(api: SyncAPI, args: argparse.Namespace) -> int:
    confirm: Callable[[], bool] = (lambda: True) if args.yes else _confirm_prompt
    if api.sync_now(confirm):
        print('Remote store updated.')
    else:
        print('Cancelled.')
    return 0


def cmd_pull(api: SyncAPI, args: argparse.Namespace) -> int:
    # The session pull already ran
    print(f'{len(api.state.transactions)} transactions, {len(api.state.savings.completed_days)} completed days.')
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from .core import endpoint
    app = endpoint.create_app()
    app.run(host=args.host, port=args.port)
    return 0


def cmd_auth(args: argparse.Namespace) -> int:
    from .core import auth
    if args.sign_out:
        auth.sign_out()
        print('Signed out.')
        return 0
    auth.authenticate()
    print(f'Credentials saved to {lib.settings.creds_path}')
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ledgersync', description='Personal ledger with spreadsheet backup.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show debug messages.')
    sub = parser.add_subparsers(dest='command', required=True)

    types = [str(t) for t in models.TransactionType]

    p = sub.add_parser('pull', help='Pull the remote state and show a short summary.')
    p.set_defaults(func=cmd_pull)

    p = sub.add_parser('list', help='List transactions.')
    group = p.add_mutually_exclusive_group()
    group.add_argument('--date', help='Only transactions of this ledger date (YYYY-MM-DD).')
    group.add_argument('--today', action='store_true', help='Only transactions recorded today.')
    p.set_defaults(func=cmd_list)

    p = sub.add_parser('add', help='Add a transaction.')
    p.add_argument('type', choices=types)
    p.add_argument('date', help='Ledger date (YYYY-MM-DD).')
    p.add_argument('category')
    p.add_argument('amount')
    p.add_argument('--note', default='')
    p.set_defaults(func=cmd_add)

    p = sub.add_parser('delete', help='Delete transactions by id.')
    p.add_argument('ids', nargs='+')
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser('categories', help='List, add or remove categories.')
    p.add_argument('action', nargs='?', choices=['list', 'add', 'remove'], default='list')
    p.add_argument('type', nargs='?', choices=types)
    p.add_argument('name', nargs='?')
    p.set_defaults(func=cmd_categories)

    p = sub.add_parser('toggle', help='Mark or unmark a savings challenge day.')
    p.add_argument('day', type=int)
    p.set_defaults(func=cmd_toggle)

    p = sub.add_parser('savings', help='Show the savings challenge progress.')
    p.set_defaults(func=cmd_savings)

    today = datetime.date.today()
    p = sub.add_parser('month', help='Show the net amount per day of a month.')
    p.add_argument('year', type=int, nargs='?', default=today.year)
    p.add_argument('month', type=int, nargs='?', default=today.month, choices=range(1, 13))
    p.set_defaults(func=cmd_month)

    p = sub.add_parser('sync', help='Overwrite the remote store with the local data.')
    p.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation.')
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser('serve', help='Serve the spreadsheet as the remote sync endpoint.')
    p.add_argument('--host', default='127.0.0.1')
    p.add_argument('--port', type=int, default=8080)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser('auth', help='Sign in to Google with the installed-app flow.')
    p.add_argument('--sign-out', action='store_true', help='Remove the stored credentials.')
    p.set_defaults(func=cmd_auth)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        log.set_logging_level(logging.DEBUG)
    elif os.environ.get(log.LOG_LEVEL_ENV_KEY):
        log.set_logging_level(log.default_level())
    else:
        log.set_logging_level(logging.WARNING)

    if args.command == 'categories' and args.action in ('add', 'remove') and not (args.type and args.name):
        parser.error(f'categories {args.action} needs a type and a name')

    # Keeps the Qt application alive for the thread pool of the session
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])
    logging.debug(f'Running "{args.command}" in {app.applicationName()}')

    try:
        if args.command in NO_SESSION_COMMANDS:
            return args.func(args)

        api = SyncAPI()
        api.pull()
        try:
            return args.func(api, args)
        finally:
            api.wait_for_pushes()
            _report_push_failures()
    except status.BaseStatusException as ex:
        print(f'Error: {ex}', file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
