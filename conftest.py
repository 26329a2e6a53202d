import pytest

from consumat.agents import VisibilityMode
from consumat.config import MarketConfig
from consumat.network import SocialGraph, ring_edges


def _config(**overrides) -> MarketConfig:
    values = dict(
        network_path="ring.edges", num_products=2, alpha=0.5, buy_probability=1.0, days=5,
        stationality=1, random_model=False, visibility=VisibilityMode.NORMAL, extended_model=False,
        optimize=False, multiobjective=False, monte_carlos=1, social_preference=0.5, u_min=0.3,
        uncertainty_threshold=0.3, awareness_speak=0.3, awareness_decay=0.1, targets_ratio=0.3,
        root_seed=7,
    )
    values.update(overrides)
    return MarketConfig(**values)


@pytest.fixture
def make_config():
    return _config


@pytest.fixture
def ring10():
    return SocialGraph.from_edges(10, ring_edges(10, 2))


@pytest.fixture
def campaign_config():
    return _config(num_products=2, days=12, stationality=2, extended_model=True, optimize=True,
                   multiobjective=True, monte_carlos=3, buy_probability=0.7)


@pytest.fixture
def edge_file(tmp_path):
    path = tmp_path / "ring.edges"
    path.write_text("\n".join(f"{u} {v}" for u, v in ring_edges(12, 4)) + "\n")
    return path


@pytest.fixture
def properties_file(tmp_path, edge_file):
    path = tmp_path / "market.properties"
    path.write_text(
        "# test market\n"
        f"network_path={edge_file.name}\n"
        "num_prods=2\n"
        "alpha_value=0.5\n"
        "buy_probability=0.8\n"
        "days=8\n"
        "stationality=2\n"
        "random_model=false\n"
        "prod_visibility=1\n"
        "extended_model=true\n"
        "optimize=true\n"
        "multiobjective=true\n"
        "monte_carlos=2\n"
        "Bi=0.5\n"
        "Umin=0.3\n"
        "Unct=0.3\n"
        "awareness_value=0.3\n"
        "awareness_decay_value=0.1\n"
        "targets_ratio=0.25\n"
    )
    return path
