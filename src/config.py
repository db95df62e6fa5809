from __future__ import annotations

from functools import cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"


class AppSettings(BaseSettings):
    etherscan_api_key: str = ""
    coinmarketcap_api_key: str = ""
    moralis_api_key: str = ""

    eth_rpc_url: str = "https://rpc.ankr.com/eth"
    price_proxy_url: str = "http://localhost:3005"
    token_index: Literal["etherscan", "moralis"] = "etherscan"

    session_cache_path: Path = ARTIFACTS_DIR / "session_cache.db"
    price_cache_file: Path = ARTIFACTS_DIR / "price-cache.json"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()
