from __future__ import annotations

import csv
import os
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .statistics import HEURISTIC_NAMES, MonteCarloStatistics, Statistics


def fmt_num(v, digits: int = 4) -> str:
    try:
        return f"{float(v):.{digits}f}"
    except (TypeError, ValueError):
        return str(v)

def _fmt_vec(values, digits: int = 4) -> str:
    return "[" + ", ".join(fmt_num(v, digits) for v in values) + "]"


# ---------------- Text summary ----------------
def format_summary(market, stats: Statistics, network_stats: Optional[Dict[str, object]] = None) -> str:
    info = market.describe()
    net = network_stats if network_stats is not None else market.graph.stats()
    lines = [
        "STRUCTURE",
        f"  network: nodes={net['nodes']} edges={net['edges']} isolates={net['isolates']} "
        f"mean_degree={fmt_num(net['mean_degree'], 2)}",
        f"  customers={info['customers']} products={info['products']} "
        f"extended_model={info['extended_model']} random_model={info['random_model']}",
        f"  visibility={info['visibility']}",
        f"  quality={_fmt_vec(info['quality'])}",
    ]
    if info["campaign_product"] is not None:
        lines.append(f"  campaign_product={info['campaign_product']} seeds={info['seeds']}")
    lines += [
        "EXECUTION",
        f"  events={stats.recorded} execution_time={fmt_num(stats.execution_time, 3)}s",
        "PERFORMANCE",
        f"  gini(last)={fmt_num(stats.gini[-1]) if stats.recorded else 'n/a'} "
        f"gini(sum)={fmt_num(stats.aggregated_gini())}",
        f"  turbulence(sum)={fmt_num(stats.aggregated_turbulence())} "
        f"active(sum)={fmt_num(stats.aggregated_active_customers())}",
        f"  sales={stats.last_product_selection().tolist()}",
        f"  buy_share={_fmt_vec(stats.last_buy_probability())}",
        f"  awareness={_fmt_vec(stats.last_awareness_ratio())}",
        "  heuristics: " + " ".join(f"{name}={fmt_num(v)}"
                                    for name, v in zip(HEURISTIC_NAMES, stats.mean_heuristic_usage())),
    ]
    if stats.campaign is not None:
        c = stats.campaign
        lines.append(f"  benefit={fmt_num(c.benefit)} cost={fmt_num(c.cost)} combined={fmt_num(c.combined)}")
    return "\n".join(lines)

def format_monte_carlo(mc: MonteCarloStatistics) -> str:
    s = mc.summary()
    parts = [f"repetitions={s['completed']}/{s['requested']}"]
    if s["failed"]:
        parts.append(f"failed={mc.failed}")
    for key in ("benefit", "cost", "combined", "execution_time"):
        if key in s:
            parts.append(f"{key}={fmt_num(s[key])}")
    return " ".join(parts)


# ---------------- CSV ----------------
class RunLogger:
    def __init__(self, out_path: str):
        self.out_path = out_path
        self._writer = None
        self._fh = None

    def open(self, fieldnames: List[str]):
        os.makedirs(os.path.dirname(self.out_path) or ".", exist_ok=True)
        self._fh = open(self.out_path, "w", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(self._fh, fieldnames=fieldnames)
        self._writer.writeheader()

    def write(self, row: Dict[str, object]):
        if self._writer is None:
            raise RuntimeError(f"RunLogger for {self.out_path} is not open")
        self._writer.writerow(row)

    def close(self):
        if self._fh:
            self._fh.close()
            self._fh = None
            self._writer = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

def _write_frame(frame: pd.DataFrame, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    frame.to_csv(path, index=False)
    return path

def write_statistics_csv(stats: Statistics, path: str) -> str:
    """Export of a finished run; live runs stream the same rows through RunLogger."""
    return _write_frame(stats.to_frame(), path)

def write_sweep_csv(frame: pd.DataFrame, path: str) -> str:
    return _write_frame(frame, path)


# ---------------- Plots ----------------
def plot_series(frames: Dict[str, pd.DataFrame], metric: str, path: str, title: Optional[str] = None,
                cumulative: bool = False) -> str:
    """One line per run/scenario of `metric` against the consumption event index."""
    names = list(frames)
    cmap = plt.get_cmap("tab20", max(1, len(names)))
    plt.figure(figsize=(12, 6.5))
    plotted = 0
    for i, name in enumerate(names):
        df = frames[name]
        if metric not in df.columns:
            continue
        y = df[metric].astype(float).values
        if cumulative:
            y = np.cumsum(y)
        plt.plot(df["event"].values, y, label=name, color=cmap(i), linewidth=2.0, alpha=0.9)
        plotted += 1
    plt.title(title or metric, fontsize=18)
    plt.xlabel("Consumption event", fontsize=12); plt.ylabel(metric, fontsize=12)
    if plotted > 0:
        plt.legend(loc="best", ncol=2, fontsize=10, frameon=True)
    plt.grid(True, linestyle="--", linewidth=0.6, alpha=0.4)
    plt.tight_layout()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    plt.savefig(path, dpi=200)
    plt.close()
    return path

def plot_sweep(frame: pd.DataFrame, path: str) -> str:
    """Benefit against cost per preset for a seed sweep."""
    presets = list(dict.fromkeys(frame["preset"]))
    cmap = plt.get_cmap("tab10", max(1, len(presets)))
    plt.figure(figsize=(10, 6.5))
    for i, name in enumerate(presets):
        grp = frame[frame["preset"] == name].sort_values("seeds")
        plt.plot(grp["cost"].values, grp["benefit"].values, marker="o", label=name, color=cmap(i))
    plt.xlabel("Cost (NPV)", fontsize=12); plt.ylabel("Benefit (NPV)", fontsize=12)
    plt.title("Seed sweep", fontsize=18)
    if presets:
        plt.legend(loc="best", fontsize=10, frameon=True)
    plt.grid(True, linestyle="--", linewidth=0.6, alpha=0.4)
    plt.tight_layout()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    plt.savefig(path, dpi=200)
    plt.close()
    return path
