"""CLI 入口模块 -- python -m sightline.core <command>

支持的命令：
  issue-token <token_id> [--limit N] [--window S]  签发 token，secret 仅打印一次
  disable-token <token_id>                         禁用 token（软删除）
  set-limit <token_id> --limit N --window S        更新限流参数
  list-tokens                                      列出全部 token（不含 secret）
"""

import argparse
import asyncio
import sys

from pydantic import ValidationError

from .config import get_db_path, load_analytics_config
from .exceptions import SightlineError


def build_parser() -> argparse.ArgumentParser:
    config = load_analytics_config()
    parser = argparse.ArgumentParser(prog="python -m sightline.core")
    sub = parser.add_subparsers(dest="command", required=True)

    issue = sub.add_parser("issue-token", help="签发 token")
    issue.add_argument("token_id")
    issue.add_argument("--limit", type=int, default=config.default_rate_limit)
    issue.add_argument("--window", type=int, default=config.default_window_s)

    disable = sub.add_parser("disable-token", help="禁用 token")
    disable.add_argument("token_id")

    set_limit = sub.add_parser("set-limit", help="更新限流参数")
    set_limit.add_argument("token_id")
    set_limit.add_argument("--limit", type=int, required=True)
    set_limit.add_argument("--window", type=int, required=True)

    sub.add_parser("list-tokens", help="列出全部 token")
    return parser


async def run(args: argparse.Namespace) -> int:
    """执行命令，返回进程退出码"""
    from .secret_store import SecretStore
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    secret_store = SecretStore(store_group.token_store)

    try:
        if args.command == "issue-token":
            raw_secret = await secret_store.issue(args.token_id, args.limit, args.window)
            print(f"token_id: {args.token_id}")
            print(f"secret:   {raw_secret}")
            print("secret 只显示这一次，请妥善保存")
        elif args.command == "disable-token":
            if not await secret_store.disable(args.token_id):
                print(f"token 不存在: {args.token_id}")
                return 1
            print(f"已禁用: {args.token_id}")
        elif args.command == "set-limit":
            if not await secret_store.update_rate_limit(args.token_id, args.limit, args.window):
                print(f"token 不存在: {args.token_id}")
                return 1
            print(f"已更新: {args.token_id} limit={args.limit} window={args.window}s")
        elif args.command == "list-tokens":
            for token in await secret_store.list_tokens():
                state = "enabled" if token.enabled else "disabled"
                print(
                    f"{token.token_id}\t{state}\t"
                    f"limit={token.rate_limit}/{token.window_s}s\t"
                    f"created={token.created_at.isoformat()}"
                )
    except (SightlineError, ValidationError) as e:
        print(f"错误: {e}")
        return 1
    finally:
        await store_group.conn.close()
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI 主入口"""
    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
