# src/optirollup/cli/cli.py
import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

import yaml

from ..config.settings import NodeConfig
from ..exceptions import RollupError
from ..monitoring.logging_config import LogConfig
from ..node import RollupNode
from ..storage.rollup_state import RollupStateStore
from ..utils.logger import setup_logging

_MISSING = object()


class CLI:
    def main(self, args: List[str]) -> int:
        parser = self.create_parser()
        args = parser.parse_args(args)

        if not hasattr(args, 'func'):
            parser.print_help()
            return 1

        if args.command != 'run':
            setup_logging(args.log_level)

        try:
            return args.func(args) or 0
        except RollupError as e:
            print(f"Error: {str(e)}", file=sys.stderr)
            return 1

    def create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description='optirollup sequencer CLI')
        parser.add_argument('--log-level', default='WARNING', help='Console log level for one-shot commands')
        subparsers = parser.add_subparsers(title='commands', dest='command')

        # Node commands
        run = subparsers.add_parser('run', help='Run a sequencer node')
        run.add_argument('--config', default=None, help='Path to YAML config')
        run.set_defaults(func=self.run_node)

        # State inspection
        inspect = subparsers.add_parser('inspect', help='Inspect a persisted state database')
        inspect.add_argument('db_path', help='Path to the sqlite state database')
        inspect.add_argument(
            '--table',
            choices=['batches', 'deposits', 'withdrawals', 'validators'],
            help='List the rows of one table'
        )
        inspect.add_argument('--limit', type=int, default=20, help='Maximum rows to list')
        inspect.set_defaults(func=self.inspect_state)

        # Configuration
        config = subparsers.add_parser('config', help='Print effective configuration')
        config.add_argument('--config', default=None, help='Path to YAML config')
        config.add_argument('--get', dest='key', default=None, help='Dotted key, e.g. rollup.batch_size')
        config.set_defaults(func=self.show_config)

        return parser

    def run_node(self, args) -> int:
        settings = NodeConfig(args.config).settings
        monitoring = settings.monitoring
        LogConfig(
            log_dir=monitoring.log_dir,
            level=monitoring.log_level,
            max_size=monitoring.log_max_size,
            backup_count=monitoring.log_backup_count
        ).setup_logging()

        node = RollupNode(settings)
        print(f"Starting rollup node ({node.settlement.name})")
        try:
            asyncio.run(node.run_forever())
        except KeyboardInterrupt:
            print("Node stopped")
        return 0

    def inspect_state(self, args) -> int:
        if not os.path.exists(args.db_path):
            print(f"Error: no database at {args.db_path}", file=sys.stderr)
            return 1

        store = RollupStateStore(args.db_path)
        try:
            print(f"State database: {args.db_path}")
            for table, count in store.counts().items():
                print(f"  {table}: {count}")
            roots = store.get_meta("rollup:roots")
            if roots:
                print(f"Current root:   {roots['current_root']}")
                print(f"Finalized root: {roots['finalized_root']}")
                print(f"Next batch id:  {roots['next_batch_id']}")

            if args.table:
                rows = {
                    'batches': store.load_batches,
                    'deposits': store.load_deposits,
                    'withdrawals': store.load_withdrawals,
                    'validators': store.load_validators
                }[args.table]()
                for row in rows[:args.limit]:
                    print(self._summarize(args.table, row))
        finally:
            store.close()
        return 0

    @staticmethod
    def _summarize(table: str, row: dict) -> str:
        if table == 'batches':
            return (
                f"batch {row['id']}: {row['status']} txs={len(row['transactions'])} "
                f"state_root={row['state_root']}"
            )
        if table == 'validators':
            state = 'active' if row['active'] else 'inactive'
            return f"{row['address']}: {state} stake={row['stake']}"
        return f"{row['id']}: {row['status']} user={row['user']} amount={row['amount']}"

    def show_config(self, args) -> int:
        config = NodeConfig(args.config)
        if args.key:
            value = config.get(args.key, _MISSING)
            if value is _MISSING:
                print(f"Error: unknown key {args.key}", file=sys.stderr)
                return 1
            print(json.dumps(value) if isinstance(value, (dict, list)) else value)
            return 0

        print(yaml.safe_dump(config.effective(), sort_keys=False), end='')
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    return CLI().main(sys.argv[1:] if argv is None else argv)


if __name__ == "__main__":
    sys.exit(main())
