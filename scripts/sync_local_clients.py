import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clientdesk.application import build_services
from clientdesk.config import load_settings
from clientdesk.errors import ClientDeskError
from clientdesk.repository import BackingStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Copy the remote client list into the local store used by local-mode operations"
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML configuration (defaults to CLIENTDESK_CONFIG or config/clientdesk.yaml)",
    )
    return parser.parse_args()


async def sync(config_path: str | None) -> int:
    settings = load_settings(Path(config_path).expanduser() if config_path else None)
    services = build_services(settings)
    if services.repository.mode_for("list") is not BackingStore.REMOTE:
        print("The 'list' operation is routed to the local store; nothing to copy.", file=sys.stderr)
        await services.aclose()
        return 1

    try:
        clients = await services.repository.list()
        count = await services.repository.cache_clients(clients)
    except ClientDeskError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await services.aclose()

    print(f"Copied {count} client(s) into {settings.store_path}")
    return 0


def main() -> int:
    args = parse_args()
    return asyncio.run(sync(args.config_path))


if __name__ == "__main__":
    raise SystemExit(main())
