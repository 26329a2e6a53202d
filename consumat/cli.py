from __future__ import annotations

import argparse
import datetime
import logging
import os
from typing import List, Optional, Tuple

from .config import ConfigError, ConfigReader, MarketConfig, load_overrides
from .market import Market
from .montecarlo import BACKENDS, MonteCarloError, MonteCarloRunner
from .network import NetworkError, SocialGraph, load_network
from .optimization import WEIGHT_PRESETS, TargetingProblem, pareto_rows, seed_sweep
from .reporting import RunLogger, format_monte_carlo, format_summary, plot_sweep, write_sweep_csv
from .randomizer import seed_table

log = logging.getLogger("consumat")


# ----------------------- CLI -----------------------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="consumat", description="Consumat market simulation on social networks")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    p.add_argument("--override", default=None, help="Path to JSON file with configuration overrides")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("simulate", help="Run one repetition and print its summary")
    s.add_argument("--config", required=True, help="Path to .properties or .json configuration")
    s.add_argument("--out", default=None, help="Per-event CSV (default: logs/consumat_<ts>.csv)")
    s.add_argument("--seed-index", type=int, default=0, help="Repetition index in the seed table")

    e = sub.add_parser("evaluate", help="Monte-Carlo benefit/cost of one targeting vector")
    e.add_argument("--config", required=True)
    e.add_argument("--weights", required=True, help="w_degree,w_two_step,w_clustering[,w_betweenness],num_seeds")
    e.add_argument("--random", action="store_true", help="Random seeds instead of weighted ranking")

    w = sub.add_parser("sweep", help="Seed-count sweep with the classic weight presets")
    w.add_argument("--config", required=True)
    w.add_argument("--out", default=None, help="CSV with the non-dominated rows per preset")
    w.add_argument("--all-out", default=None, help="CSV with every evaluated row")
    w.add_argument("--plot", default=None, help="PNG with benefit against cost per preset")
    w.add_argument("--max-seeds", type=int, default=None)
    w.add_argument("--random", action="store_true", help="Random seeds instead of the weight presets")

    for cmd in (e, w):
        cmd.add_argument("--workers", type=int, default=None, help="Parallel repetitions (default: cores-1)")
        cmd.add_argument("--backend", choices=BACKENDS, default="process")
    return p

def parse_weights(text: str) -> List[float]:
    try:
        return [float(x) for x in text.split(",") if x.strip()]
    except ValueError:
        raise ValueError(f"invalid weight vector '{text}'") from None


# ----------------------- helpers -----------------------
def _load(args) -> Tuple[MarketConfig, SocialGraph]:
    reader = ConfigReader.from_file(args.config)
    overrides = load_overrides(args.override)
    if overrides:
        reader = reader.with_overrides(overrides)
        log.info("Applied overrides from JSON: %s", sorted(overrides))
    cfg = MarketConfig.from_reader(reader)
    path = cfg.network_path
    # relative network paths are tried against the working directory, then the config directory
    if not os.path.isabs(path) and not os.path.exists(path):
        alt = os.path.join(os.path.dirname(os.path.abspath(args.config)), path)
        if os.path.exists(alt):
            path = alt
    graph = load_network(path)
    return cfg, graph

def _default_out() -> str:
    ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join("logs", f"consumat_{ts}.csv")


# ----------------------- commands -----------------------
def cmd_simulate(args) -> int:
    cfg, graph = _load(args)
    market = Market(graph, cfg)
    out = args.out or _default_out()
    with RunLogger(out) as run_logger:
        stats = market.run(repetition=args.seed_index, run_logger=run_logger)
    print(format_summary(market, stats))
    print("Saved per-event series to:", out)
    return 0

def cmd_evaluate(args) -> int:
    cfg, graph = _load(args)
    vector = parse_weights(args.weights)
    runner = MonteCarloRunner(graph, cfg, workers=args.workers, backend=args.backend)
    log.debug("seed table: %s", seed_table(cfg.monte_carlos, cfg.root_seed))
    problem = TargetingProblem(graph, cfg, runner=runner, num_metrics=max(1, len(vector) - 1),
                               random_targeting=args.random)
    result = problem.evaluate(vector)
    print(f"benefit={result.benefit:.6f} cost={result.cost:.6f} combined={result.combined:.6f}")
    print(format_monte_carlo(problem.last_batch))
    print("objectives:", problem.as_objectives(result))
    return 0

def cmd_sweep(args) -> int:
    cfg, graph = _load(args)
    runner = MonteCarloRunner(graph, cfg, workers=args.workers, backend=args.backend)
    problem = TargetingProblem(graph, cfg, runner=runner, random_targeting=args.random)
    presets = {"random": (0.0, 0.0, 0.0)} if args.random else WEIGHT_PRESETS
    frame = seed_sweep(problem, presets, args.max_seeds)
    front = pareto_rows(frame)
    print(front.to_string(index=False))
    if args.all_out:
        write_sweep_csv(frame, args.all_out)
    out = write_sweep_csv(front, args.out or _default_out())
    print("Saved non-dominated rows to:", out)
    if args.plot:
        plot_sweep(frame, args.plot)
    return 0

COMMANDS = {"simulate": cmd_simulate, "evaluate": cmd_evaluate, "sweep": cmd_sweep}


# ---------------- MAIN ----------------
def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return COMMANDS[args.command](args)
    except (ConfigError, NetworkError) as e:
        log.error("%s", e)
        return 2
    except (MonteCarloError, ValueError) as e:
        log.error("%s", e)
        return 1

if __name__ == "__main__":
    raise SystemExit(main())
