"""CLI entry point for building, back-testing and running the forecaster.

Usage:
    python -m backtest --build
    python -m backtest --backtest --start 2012-01-01 --end 2017-12-31
    python -m backtest --search
    python -m backtest --simulate 2016-03-01 --hours 168
    python -m backtest --realtime
    python -m backtest --list-nodes
    python -m backtest --enable 3
    python -m backtest --remove 7
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone

# Add backend to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from app.clients.alphavantage import AlphaVantageFeed
from app.config import Settings, get_settings
from app.model_config import load_model_definitions
from app.realtime import load_realtime_price, load_realtime_store
from app.storage.database import BarTableRepository, Database, EnabledNodeRepository, NodeRepository
from app.storage.loaders import HistoricalSlotLoader
from app.storage.model_store import ModelArtifactStore
from app.storage.raw_feed import load_raw_years
from core.ensemble import Ensemble, group_by_horizon
from core.models.node import ModelNode
from core.models.resolution import TRAINING_RESOLUTION, Resolution
from core.registry import ModelRegistry
from core.store import MultiResolutionStore, StoreKind
from core.training import ModelBuilder

from backtest.config import BacktestSettings, get_backtest_settings
from backtest.report import ReportFormatter
from backtest.runner import HistoricalBacktester, to_ms
from backtest.search import CombinationSearch
from backtest.simulation import perform_simulation

logger = logging.getLogger(__name__)


def parse_date(date_str: str) -> datetime:
    """Parse YYYY-MM-DD to timezone-aware datetime."""
    try:
        dt = datetime.strptime(date_str, "%Y-%m-%d")
        return dt.replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid date format: {date_str} (expected YYYY-MM-DD)"
        )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build, back-test and run the price forecasting ensemble",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m backtest --build
  python -m backtest --backtest --start 2014-01-01 --end 2015-12-31
  python -m backtest --search
  python -m backtest --simulate 2016-03-01 --hours 168
  python -m backtest --realtime
        """,
    )

    commands = parser.add_mutually_exclusive_group(required=True)
    commands.add_argument(
        "--build",
        action="store_true",
        help="Create nodes from the models file and build every unbuilt tree",
    )
    commands.add_argument(
        "--backtest",
        action="store_true",
        help="Simulate the full history with the enabled nodes and print metrics",
    )
    commands.add_argument(
        "--search",
        action="store_true",
        help="Greedily search the best enabled node combination",
    )
    commands.add_argument(
        "--simulate",
        type=parse_date,
        default=None,
        metavar="START",
        help="Simulate forward from START (YYYY-MM-DD) on historical data",
    )
    commands.add_argument(
        "--realtime",
        action="store_true",
        help="Forecast from realtime feed data",
    )
    commands.add_argument(
        "--list-nodes",
        action="store_true",
        help="List all model nodes",
    )
    commands.add_argument(
        "--enable",
        type=int,
        default=None,
        metavar="NODE_ID",
        help="Add a root node to the enabled set",
    )
    commands.add_argument(
        "--remove",
        type=int,
        default=None,
        metavar="NODE_ID",
        help="Delete a node, its subtree and their fitted models",
    )

    parser.add_argument(
        "--start",
        type=parse_date,
        default=None,
        help="Back-test start date (YYYY-MM-DD, default from settings)",
    )
    parser.add_argument(
        "--end",
        type=parse_date,
        default=None,
        help="Back-test end date (YYYY-MM-DD, default from settings)",
    )
    parser.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Hours to simulate (default from settings)",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="Stop the search after this many accepted changes",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args()


def historical_store(settings: Settings) -> MultiResolutionStore:
    def raw_loader():
        return load_raw_years(
            settings.symbol_dir / "raw",
            settings.raw_first_year,
            settings.raw_last_year,
            Resolution.finest(),
            settings.raw_hours_offset,
        )

    loader = HistoricalSlotLoader(settings.symbol_dir / "bars", raw_loader)
    return MultiResolutionStore(StoreKind.HISTORICAL, loader)


def enabled_nodes(registry: ModelRegistry, enabled_repo: EnabledNodeRepository) -> list[ModelNode]:
    return registry.find([i for i in enabled_repo.load() if i in registry])


def cmd_list_nodes(registry: ModelRegistry, enabled_repo: EnabledNodeRepository) -> None:
    ReportFormatter.print_nodes(list(registry), set(enabled_repo.load()))


def cmd_enable(node_id: int, registry: ModelRegistry, enabled_repo: EnabledNodeRepository) -> None:
    node = registry.get(node_id)
    if not node.is_root or node.precision is None:
        print(f"Error: node {node_id} is not a built root node")
        sys.exit(1)
    enabled_repo.enable(node_id)
    print(f"Enabled node {node_id}")


def cmd_remove(
    node_id: int,
    registry: ModelRegistry,
    node_repo: NodeRepository,
    artifacts: ModelArtifactStore,
) -> None:
    parent_id = registry.get(node_id).parent_id
    removed = registry.remove(node_id)
    node_repo.delete(removed)
    if parent_id is not None and parent_id in registry:
        node_repo.save(registry.get(parent_id))
    for removed_id in removed:
        artifacts.delete(removed_id)
    print(f"Removed nodes: {', '.join(str(i) for i in removed)}")


def cmd_build(
    settings: Settings,
    registry: ModelRegistry,
    store: MultiResolutionStore,
    node_repo: NodeRepository,
    artifacts: ModelArtifactStore,
) -> None:
    config = load_model_definitions(settings.models_file)
    for definition in config.new_definitions(list(registry)):
        node = definition.to_node(max(registry.next_id(), node_repo.next_id()))
        registry.register(node)
        node_repo.save(node)
        logger.info(f"Created node {node.id} from {definition.kind.value} definition, horizon {definition.horizon}")

    builder = ModelBuilder(registry, store, save_model=artifacts.save)
    for root in registry.roots():
        if root.precision is not None:
            continue
        built = builder.build_tree(root)
        node_repo.save_all(built)
        print(f"Built node {root.id}: {len(built)} nodes in tree, precision {root.precision:.1%}")


def cmd_backtest(
    args: argparse.Namespace,
    bt_settings: BacktestSettings,
    backtester: HistoricalBacktester,
    nodes: list[ModelNode],
) -> None:
    if not nodes:
        print("Error: no enabled nodes (run --search or enable nodes first)")
        sys.exit(1)
    start = args.start or bt_settings.start_date
    end = args.end or bt_settings.end_date
    metrics = backtester.evaluate(nodes, start, end, name="current")
    ReportFormatter.print_metrics("current", metrics)


def cmd_search(
    args: argparse.Namespace,
    bt_settings: BacktestSettings,
    backtester: HistoricalBacktester,
    registry: ModelRegistry,
    enabled_repo: EnabledNodeRepository,
) -> None:
    search = CombinationSearch(
        backtester,
        registry,
        enabled_repo,
        args.start or bt_settings.start_date,
        args.end or bt_settings.end_date,
    )
    final = search.run(max_rounds=args.rounds)
    print(f"\nEnabled nodes: {', '.join(str(i) for i in final) or '-'}")


def cmd_simulate(
    args: argparse.Namespace,
    bt_settings: BacktestSettings,
    store: MultiResolutionStore,
    registry: ModelRegistry,
    nodes: list[ModelNode],
) -> None:
    if not nodes:
        print("Error: no enabled nodes")
        sys.exit(1)
    result = perform_simulation(
        store,
        registry,
        nodes,
        to_ms(args.simulate),
        args.hours or bt_settings.simulation_hours,
        bt_settings.output_resolution,
    )
    ReportFormatter.print_forecast(result)


def manual_price() -> float:
    while True:
        answer = input("Enter realtime price manually: ")
        try:
            return float(answer)
        except ValueError:
            print(f"Not a price: {answer!r}")


def cmd_realtime(
    args: argparse.Namespace,
    settings: Settings,
    bt_settings: BacktestSettings,
    store: MultiResolutionStore,
    registry: ModelRegistry,
    bar_repo: BarTableRepository,
    nodes: list[ModelNode],
) -> None:
    if not nodes:
        print("Error: no enabled nodes")
        sys.exit(1)
    with AlphaVantageFeed(settings) as feed:
        realtime = load_realtime_store(feed, bar_repo, historical=store)
        price = load_realtime_price(feed, manual_price)

    ensemble = Ensemble(registry, realtime)
    forecasts = {
        horizon: ensemble.predict_group(group, price)
        for horizon, group in group_by_horizon(nodes).items()
    }
    ReportFormatter.print_horizon_forecasts(price, forecasts)

    hourly = realtime[TRAINING_RESOLUTION]
    result = perform_simulation(
        realtime,
        registry,
        nodes,
        hourly[-1].end + 1,
        args.hours or bt_settings.simulation_hours,
        TRAINING_RESOLUTION,
    )
    ReportFormatter.print_forecast(result)


def main() -> None:
    # FORECAST_* / BACKTEST_* variables from .env
    load_dotenv(override=False)
    args = parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    settings = get_settings()
    bt_settings = get_backtest_settings()

    db = Database(settings.resolved_database_url)
    db.create_tables()
    node_repo = NodeRepository(db)
    enabled_repo = EnabledNodeRepository(db)
    artifacts = ModelArtifactStore(settings.symbol_dir / "models")
    store = historical_store(settings)

    try:
        with ModelRegistry(load_model=artifacts.load) as registry:
            registry.register_all(node_repo.load_all())

            if args.list_nodes:
                cmd_list_nodes(registry, enabled_repo)
            elif args.enable is not None:
                cmd_enable(args.enable, registry, enabled_repo)
            elif args.remove is not None:
                cmd_remove(args.remove, registry, node_repo, artifacts)
            elif args.build:
                cmd_build(settings, registry, store, node_repo, artifacts)
            elif args.search:
                backtester = HistoricalBacktester(
                    store, registry, bt_settings.output_dir, bt_settings.workers,
                    bt_settings.window_days, bt_settings.output_resolution,
                )
                cmd_search(args, bt_settings, backtester, registry, enabled_repo)
            elif args.backtest:
                backtester = HistoricalBacktester(
                    store, registry, bt_settings.output_dir, bt_settings.workers,
                    bt_settings.window_days, bt_settings.output_resolution,
                )
                cmd_backtest(args, bt_settings, backtester, enabled_nodes(registry, enabled_repo))
            elif args.simulate:
                cmd_simulate(args, bt_settings, store, registry, enabled_nodes(registry, enabled_repo))
            else:
                cmd_realtime(
                    args, settings, bt_settings, store, registry,
                    BarTableRepository(db), enabled_nodes(registry, enabled_repo),
                )
    finally:
        db.close()


if __name__ == "__main__":
    main()
