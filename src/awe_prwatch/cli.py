from __future__ import annotations

import argparse
import json
import sys

import httpx
import uvicorn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='awe-prwatch', description='Inspect and drive GitHub PR watches')
    parser.add_argument('--api-base', default='http://127.0.0.1:8000', help='PR watch API base URL')

    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', help='Run the PR watch API server')
    serve.add_argument('--host', default='127.0.0.1')
    serve.add_argument('--port', type=int, default=8000)

    sub.add_parser('status', help='Show GitHub authentication status')

    watches = sub.add_parser('watches', help='List PR watches or review watches')
    watches.add_argument('--kind', choices=['pr', 'review'], default='pr', help='Watch kind (default: pr)')
    watches.add_argument('--workspace-id', default='', help='Workspace id (required for review watches)')

    trigger = sub.add_parser('trigger', help='Run a review check now')
    trigger.add_argument('--watch-id', default='', help='Review watch id')
    trigger.add_argument('--workspace-id', default='', help='Check every enabled watch of this workspace')

    task_pr = sub.add_parser('task-pr', help='Show the PR associated with a task')
    task_pr.add_argument('task_id', help='Task id')

    stats = sub.add_parser('stats', help='Show PR statistics')
    stats.add_argument('--start-date', default='', help='YYYY-MM-DD')
    stats.add_argument('--end-date', default='', help='YYYY-MM-DD')

    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    base = args.api_base.rstrip('/')

    if args.command == 'serve':
        uvicorn.run('awe_prwatch.main:app', host=args.host, port=args.port)
        return 0

    with httpx.Client(timeout=60) as client:
        if args.command == 'status':
            response = client.get(f'{base}/api/github/status')
        elif args.command == 'watches':
            if args.kind == 'review':
                workspace_id = args.workspace_id.strip()
                if not workspace_id:
                    parser.error('--workspace-id is required for review watches')
                    return 2
                response = client.get(f'{base}/api/github/watches/review', params={'workspace_id': workspace_id})
            else:
                response = client.get(f'{base}/api/github/watches/pr')
        elif args.command == 'trigger':
            watch_id = args.watch_id.strip()
            workspace_id = args.workspace_id.strip()
            if watch_id:
                response = client.post(f'{base}/api/github/watches/review/{watch_id}/trigger')
            elif workspace_id:
                response = client.post(
                    f'{base}/api/github/watches/review/trigger-all',
                    params={'workspace_id': workspace_id},
                )
            else:
                parser.error('trigger needs --watch-id or --workspace-id')
                return 2
        elif args.command == 'task-pr':
            response = client.get(f'{base}/api/github/task-prs/{args.task_id}')
        elif args.command == 'stats':
            params = {}
            if args.start_date.strip():
                params['start_date'] = args.start_date.strip()
            if args.end_date.strip():
                params['end_date'] = args.end_date.strip()
            response = client.get(f'{base}/api/github/stats', params=params)
        else:
            parser.error(f'unsupported command: {args.command}')
            return 2

    if response.status_code >= 400:
        print(f'HTTP {response.status_code}: {response.text}', file=sys.stderr)
        return 1

    _print_json(response.json())
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
