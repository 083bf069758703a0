from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class FetchConfig(BaseModel):
    # Symbols fetched concurrently per batch; a short pause separates batches to respect upstream rate limits.
    batch_size: int = Field(default=10, ge=1)
    batch_pause_seconds: float = Field(default=0.25, ge=0.0)
    max_workers: int = Field(default=10, ge=1)


class CacheConfig(BaseModel):
    enabled: bool = True
    path: str = Field(default="data/prices/bars", description="Directory for per-symbol cached daily bars")
    max_age_hours: float = Field(default=12.0, description="Cached ranges older than this are refetched")


class AnalysisConfig(BaseModel):
    benchmark_symbol: str = "SPY"
    cash_sweep_symbol: str = "SPAXX"
    # Benchmark-tracking instruments are excluded from average alpha.
    benchmark_tracking_symbols: list[str] = Field(default_factory=lambda: ["SPY", "VOO", "IVV", "SPLG", "SPYM"])
    risk_free_rate: float = 0.05
    trading_days_per_year: int = 252
    min_portfolio_value: float = Field(default=100.0, description="Days below this value get a forced zero return")
    min_trading_days: int = 20
    reconcile_tolerance_shares: float = 0.5
    share_epsilon: float = 0.001
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    def tracking_symbols(self) -> set[str]:
        out = {s.strip().upper() for s in self.benchmark_tracking_symbols if s and s.strip()}
        out.add(self.benchmark_symbol.strip().upper())
        return out


def _candidate_paths() -> list[Path]:
    paths: list[Path] = []
    env = os.environ.get("PORTFOLIO_HISTORY_CONFIG")
    if env:
        paths.append(Path(env))
    paths.append(Path("portfolio_history.yaml"))
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".portfolio_history" / "config.yaml")
    return paths


def load_config(path: Path | None = None) -> tuple[AnalysisConfig, Optional[str]]:
    """
    Load analysis config from YAML (if present).

    Search paths (first match wins):
      - explicit `path`
      - $PORTFOLIO_HISTORY_CONFIG
      - ./portfolio_history.yaml
      - ~/.portfolio_history/config.yaml
    """
    candidates = [Path(path)] if path is not None else _candidate_paths()
    for p in candidates:
        if p.exists():
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            return AnalysisConfig.model_validate(data), str(p)
    if path is not None:
        raise FileNotFoundError(f"Config file not found: {path}")
    return AnalysisConfig(), None
