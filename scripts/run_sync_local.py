import argparse
import asyncio
import json
import os
import sys
from pathlib import Path


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the DeFi Radar sync flows locally")
    p.add_argument(
        "target",
        choices=["defillama", "pool-chart", "coingecko-coins", "coingecko-trending"],
        help="Which flow to run.",
    )
    p.add_argument(
        "--entity",
        default="all",
        choices=["all", "protocols", "pools", "stablecoins", "charts"],
        help="Entity type for the defillama target (default: all).",
    )
    p.add_argument("--pool-id", help="Pool id for the pool-chart target.")
    p.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip the top pool chart refresh after a full defillama sync.",
    )
    p.add_argument(
        "--use-prefect-api",
        action="store_true",
        help="Use PREFECT_API_URL/PREFECT_API_KEY from the environment if set. Default is local/ephemeral execution.",
    )
    return p.parse_args()


def _maybe_set_ephemeral_prefect_env(use_prefect_api: bool) -> None:
    if use_prefect_api:
        return
    # Ensure local execution doesn't depend on Prefect server/cloud.
    os.environ.pop("PREFECT_API_URL", None)
    os.environ.pop("PREFECT_API_KEY", None)
    os.environ.setdefault("PREFECT_SERVER_ALLOW_EPHEMERAL_MODE", "true")


async def _run(args: argparse.Namespace) -> int:
    from defi_radar.pipelines.flows.coingecko_flows import coingecko_coins_sync_flow, coingecko_trending_sync_flow
    from defi_radar.pipelines.flows.defillama_flows import defillama_pool_chart_flow, defillama_sync_flow

    if args.target == "defillama":
        result = await defillama_sync_flow(entity=args.entity, refresh_charts=not args.no_charts)
    elif args.target == "pool-chart":
        if not args.pool_id:
            print("--pool-id is required for the pool-chart target", file=sys.stderr)
            return 2
        result = await defillama_pool_chart_flow(args.pool_id)
    elif args.target == "coingecko-coins":
        result = await coingecko_coins_sync_flow()
    else:
        result = {"trending": await coingecko_trending_sync_flow()}

    print(json.dumps(result, indent=2, default=str))
    return 0


def main() -> int:
    args = _parse_args()

    # Ensure `import defi_radar...` works when running from the repo root.
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    _maybe_set_ephemeral_prefect_env(args.use_prefect_api)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
