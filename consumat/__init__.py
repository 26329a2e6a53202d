"""Consumat market simulation on social networks with seed-targeting campaigns."""

from .agents import Customer, CustomerParameters, Product, Visibility, VisibilityMode
from .config import ConfigError, ConfigReader, MarketConfig, load_config
from .market import Heuristic, Market, Population, simulate
from .montecarlo import MonteCarloError, MonteCarloRunner
from .network import NetworkError, SocialGraph, generate_network, load_network
from .optimization import TargetingProblem, non_dominated_fronts, seed_sweep
from .randomizer import Randomizer
from .statistics import CampaignResult, MonteCarloStatistics, Statistics
from .targeting import RandomTargeting, WeightedTargeting, decode_weights

__version__ = "0.1.0"
