from __future__ import annotations

import configparser
import json
import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional

from .agents import VisibilityMode

logger = logging.getLogger("consumat.config")

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


class ConfigError(ValueError):
    """Missing or malformed configuration value."""


# ---------------- CONFIG OVERRIDES HELPERS ----------------
def load_overrides(path: Optional[str]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not os.path.isfile(path):
        raise ConfigError(f"Config JSON not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config JSON {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Config JSON root must be an object/dict.")
    return data

def _update_dict(dst: Dict[str, Any], src: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(dst)
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _update_dict(out[k], v)
        else:
            out[k] = v
    return out

def _read_properties(path: str) -> Dict[str, str]:
    # Java-style .properties: no sections, case-sensitive keys, '=' or ':' separators
    parser = configparser.ConfigParser(delimiters=("=", ":"), comment_prefixes=("#", "!"),
                                       interpolation=None, strict=False)
    parser.optionxform = str
    with open(path, "r", encoding="utf-8") as fh:
        parser.read_string("[properties]\n" + fh.read(), source=path)
    return dict(parser["properties"])


# ---------------- Reader ----------------
class ConfigReader:
    """Flat key/value store with typed accessors.

    Values come from a .properties file, a JSON object or a plain dict. Array
    values nest with ',' (1-D), ';' (2-D) and ':' (3-D) when given as strings.
    """

    def __init__(self, values: Mapping[str, Any], source: str = "<dict>"):
        self._values: Dict[str, Any] = dict(values)
        self.source = source

    @classmethod
    def from_file(cls, path: str) -> "ConfigReader":
        if not os.path.isfile(path):
            raise ConfigError(f"configuration file not found: {path}")
        ext = os.path.splitext(path)[1].lower()
        if ext == ".json":
            values = load_overrides(path)
        else:
            try:
                values = _read_properties(path)
            except configparser.Error as e:
                raise ConfigError(f"cannot parse {path}: {e}") from e
        logger.debug("read %d keys from %s", len(values), path)
        return cls(values, source=path)

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ConfigReader":
        return ConfigReader(_update_dict(self._values, overrides), source=self.source)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def keys(self) -> List[str]:
        return list(self._values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def _raw(self, key: str) -> Any:
        if key not in self._values:
            raise ConfigError(f"missing configuration key '{key}' in {self.source}")
        value = self._values[key]
        if value is None:
            raise ConfigError(f"configuration key '{key}' has no value in {self.source}")
        return value

    def _fail(self, key: str, kind: str, value: Any) -> ConfigError:
        return ConfigError(f"configuration key '{key}' is not a valid {kind}: {value!r} ({self.source})")

    # ---- scalars ----
    def get_str(self, key: str) -> str:
        return str(self._raw(key)).strip()

    def get_int(self, key: str) -> int:
        value = self._raw(key)
        if isinstance(value, bool):
            raise self._fail(key, "integer", value)
        if isinstance(value, float):
            if not value.is_integer():
                raise self._fail(key, "integer", value)
            return int(value)
        try:
            return int(str(value).strip())
        except ValueError:
            raise self._fail(key, "integer", value) from None

    def get_bool(self, key: str) -> bool:
        value = self._raw(key)
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
        raise self._fail(key, "boolean", value)

    def get_float(self, key: str) -> float:
        value = self._raw(key)
        if isinstance(value, bool):
            raise self._fail(key, "number", value)
        try:
            return float(str(value).strip()) if isinstance(value, str) else float(value)
        except (TypeError, ValueError):
            raise self._fail(key, "number", value) from None

    # ---- arrays ----
    def _split(self, key: str, value: Any, seps: str) -> Any:
        if isinstance(value, (list, tuple)):
            items = list(value)
        elif isinstance(value, str):
            items = [s for s in value.split(seps[0])]
        else:
            raise self._fail(key, "array", value)
        if len(seps) == 1:
            return [v.strip() if isinstance(v, str) else v for v in items]
        return [self._split(key, v, seps[1:]) for v in items]

    def _floats(self, key: str, nested: Any) -> Any:
        if isinstance(nested, list):
            return [self._floats(key, v) for v in nested]
        try:
            return float(nested)
        except (TypeError, ValueError):
            raise self._fail(key, "number array", self._values[key]) from None

    def get_float_array(self, key: str) -> List[float]:
        return self._floats(key, self._split(key, self._raw(key), ","))

    def get_float_array_2d(self, key: str) -> List[List[float]]:
        return self._floats(key, self._split(key, self._raw(key), ";,"))

    def get_float_array_3d(self, key: str) -> List[List[List[float]]]:
        return self._floats(key, self._split(key, self._raw(key), ":;,"))

    def get_str_array(self, key: str) -> List[str]:
        return [str(v) for v in self._split(key, self._raw(key), ",")]

    def get_str_array_2d(self, key: str) -> List[List[str]]:
        return [[str(v) for v in row] for row in self._split(key, self._raw(key), ";,")]

    def get_str_array_3d(self, key: str) -> List[List[List[str]]]:
        return [[[str(v) for v in row] for row in block] for block in self._split(key, self._raw(key), ":;,")]


# ---------------- Market configuration ----------------
@dataclass(frozen=True)
class MarketConfig:
    network_path: str
    num_products: int
    alpha: float
    buy_probability: float
    days: int
    stationality: int
    random_model: bool
    visibility: VisibilityMode
    extended_model: bool
    optimize: bool
    multiobjective: bool
    monte_carlos: int
    social_preference: float = 0.5
    u_min: float = 0.5
    uncertainty_threshold: float = 0.5
    awareness_speak: float = 0.3
    awareness_decay: float = 0.25
    targets_ratio: float = 0.1
    root_seed: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.num_products < 1:
            raise ConfigError(f"num_prods must be >= 1, got {self.num_products}")
        if self.days < 1:
            raise ConfigError(f"days must be >= 1, got {self.days}")
        if self.stationality < 1:
            raise ConfigError(f"stationality must be >= 1, got {self.stationality}")
        if self.monte_carlos < 1:
            raise ConfigError(f"monte_carlos must be >= 1, got {self.monte_carlos}")
        if self.alpha < 0:
            raise ConfigError(f"alpha_value must be >= 0, got {self.alpha}")
        for name in ("buy_probability", "social_preference", "u_min", "uncertainty_threshold",
                     "awareness_speak", "awareness_decay", "targets_ratio"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                raise ConfigError(f"{name} must lie in [0, 1], got {v}")

    @property
    def total_products(self) -> int:
        """Catalog size including the synthetic campaign product of optimization runs."""
        return self.num_products + (1 if self.optimize else 0)

    @property
    def consumption_events(self) -> int:
        return self.days // self.stationality

    def replace(self, **changes) -> "MarketConfig":
        return replace(self, **changes)

    @classmethod
    def from_reader(cls, reader: ConfigReader) -> "MarketConfig":
        random_model = reader.get_bool("random_model")
        extended = reader.get_bool("extended_model")
        optimize = reader.get_bool("optimize")
        try:
            visibility = VisibilityMode.parse(reader.get_str("prod_visibility"))
        except ValueError as e:
            raise ConfigError(str(e)) from None
        kw: Dict[str, Any] = dict(
            network_path=reader.get_str("network_path"),
            num_products=reader.get_int("num_prods"),
            alpha=reader.get_float("alpha_value"),
            buy_probability=reader.get_float("buy_probability"),
            days=reader.get_int("days"),
            stationality=reader.get_int("stationality"),
            random_model=random_model,
            visibility=visibility,
            extended_model=extended,
            optimize=optimize,
            multiobjective=reader.get_bool("multiobjective"),
            monte_carlos=reader.get_int("monte_carlos"),
        )
        # shared customer constants are only consulted outside the random model
        if not random_model:
            kw.update(social_preference=reader.get_float("Bi"), u_min=reader.get_float("Umin"),
                      uncertainty_threshold=reader.get_float("Unct"))
            if extended:
                kw.update(awareness_speak=reader.get_float("awareness_value"),
                          awareness_decay=reader.get_float("awareness_decay_value"))
        if optimize:
            kw["targets_ratio"] = reader.get_float("targets_ratio")
        if "root_seed" in reader:
            kw["root_seed"] = reader.get_int("root_seed")
        return cls(**kw)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "MarketConfig":
        return cls.from_reader(ConfigReader(values))


def load_config(path: str, overrides_path: Optional[str] = None) -> MarketConfig:
    reader = ConfigReader.from_file(path)
    overrides = load_overrides(overrides_path)
    if overrides:
        reader = reader.with_overrides(overrides)
        logger.info("applied overrides from %s: %s", overrides_path, sorted(overrides))
    return MarketConfig.from_reader(reader)
