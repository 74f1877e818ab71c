"""Ingestion engine configuration.

All thresholds, limits, domain lists and the provider alias map live here as
defaults of `IngestionSettings`. Operators tune them without code changes via a
YAML override file (`SLOT_INGEST_CONFIG`) and a handful of environment
variables; see `load_settings`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from app.core.env import env_int, load_env_if_present

# AI model
GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

# Quality thresholds
CONFIDENCE_THRESHOLD = 60
RTP_MIN = 80.0
RTP_MAX = 99.99
VOLATILITY_ENUM = ("low", "medium", "high", "very_high", "unknown")
MAX_WIN_CEILING = 1_000_000
EARLIEST_RELEASE_YEAR = 2005
INGESTION_VERSION = "2.0.0"

# Rate limiting
RATE_LIMIT_WINDOW_MINUTES = 1
RATE_LIMIT_MAX_REQUESTS = 30

# Caching
CACHE_TTL_HOURS = 24

# AI extraction
GEMINI_MAX_RETRIES = 2
GEMINI_RETRY_BASE_SECONDS = 1.0
GEMINI_TIMEOUT_SECONDS = 25.0
GROUNDLESS_CONFIDENCE_CAP = 70

# Image pipeline
IMAGE_SEARCH_TIMEOUT_SECONDS = 8.0
IMAGE_FETCH_TIMEOUT_SECONDS = 5.0
VISION_TIMEOUT_SECONDS = 10.0
IMAGE_CANDIDATE_LIMIT = 15
IMAGE_VISION_CHECKS = 3

# Batch mode
BATCH_MAX_ITEMS = 50
BATCH_DELAY_SECONDS = 0.2

# Official provider sites, public review/aggregator sites and industry press.
ALLOWED_SOURCE_DOMAINS = (
    "pragmaticplay.com", "hacksawgaming.com", "nolimitcity.com",
    "playngo.com", "pushgaming.com", "relax-gaming.com",
    "elk-studios.com", "thunderkick.com", "redtigergaming.com",
    "netent.com", "evolution.com", "blueprintgaming.com",
    "bigtimegaming.com", "quickspin.com", "yggdrasilgaming.com",
    "pocketgamessoft.com", "isoftbet.com", "endorphina.com",
    "habanero.com", "bgaming.com", "playson.com", "betsoft.com",
    "stakelogic.com", "gamomat.com", "evoplay.games", "swintt.com",
    "spribe.co", "gameart.net", "gamingcorps.com", "spinomenal.com",
    "wazdan.com", "3oaksgaming.com", "slotmill.com", "foxium.com",
    "greentube.com", "novomatic.com", "gamesglobal.com",
    "playtech.com", "igt.com", "winfast.games", "octoplay.com",
    "wizardgamesglobal.com", "tomhorngaming.com", "rubyplay.com",
    "mancalagaming.com", "mascot.games", "platipusgaming.com",
    "kalambagames.com", "avatarux.com", "fantasmagames.com",
    "printstudios.com", "peterandsons.com", "spadegaming.com",
    "reelplay.com", "booongo.com", "belatra.com",
    "slotcatalog.com", "bigwinboard.com", "askgamblers.com",
    "casinoguru.com", "vegasslotsonline.com", "slottracker.com",
    "slotswise.com", "slot.info", "casinogrounds.com",
    "gamblinginsider.com", "igamingbusiness.com", "yogonet.com",
    "european-gaming.eu", "casinobeats.com", "igamingnext.com",
)

# Gambling platforms behind auth and streaming platforms. Never cited.
BLOCKED_DOMAINS = (
    "stake.com", "stake.us", "gamdom.com", "rollbit.com",
    "roobet.com", "duelbits.com", "500.casino", "bc.game",
    "csgoempire.com", "shuffle.com", "packdraw.com",
    "kick.com", "twitch.tv",
)

BLOCKED_IMAGE_KEYWORDS = (
    "nsfw", "xxx", "porn", "hentai", "nude", "naked", "sexy",
    "adult", "erotic", "rule34", "booru", "xhamster", "xvideos",
    "favicon", "icon", "logo", "gstatic.com", "googleusercontent",
    "pixel", "1x1", "spacer", "blank", "transparent",
    "bet-size", "balance", "deposit", "withdraw", "bonus-banner",
)

BLOCKED_SEARCH_TERMS = (
    "porn", "xxx", "hentai", "nsfw", "nude", "naked", "nudes",
    "boobs", "tits", "titties", "pussy", "vagina", "penis", "dick", "cock",
    "dildo", "orgasm", "blowjob", "handjob", "cumshot", "creampie",
    "milf", "anal", "bdsm", "fetish", "onlyfans", "chaturbate",
    "xvideos", "xhamster", "pornhub", "brazzers", "bangbros",
    "sex", "sexy", "erotic", "erotica", "fap", "masturbat",
    "nigger", "nigga", "faggot", "fag", "retard", "kike", "spic",
    "chink", "wetback", "tranny", "coon",
    "gore", "snuff", "bestiality", "zoophil", "necrophil", "pedophil",
    "child porn", "cp",
    "fuck", "shit", "asshole", "bitch", "cunt", "whore", "slut",
)

# Lowercase alias -> display name. Order matters for partial matching.
CANONICAL_PROVIDERS: dict[str, str] = {
    "pragmatic play": "Pragmatic Play", "pragmatic": "Pragmatic Play", "ppgames": "Pragmatic Play",
    "hacksaw gaming": "Hacksaw Gaming", "hacksaw": "Hacksaw Gaming",
    "nolimit city": "Nolimit City", "nolimit": "Nolimit City", "nolimitcity": "Nolimit City",
    "play'n go": "Play'n GO", "playngo": "Play'n GO", "playn go": "Play'n GO",
    "push gaming": "Push Gaming",
    "big time gaming": "Big Time Gaming", "btg": "Big Time Gaming",
    "elk studios": "ELK Studios", "elk": "ELK Studios",
    "relax gaming": "Relax Gaming", "relax": "Relax Gaming",
    "red tiger gaming": "Red Tiger Gaming", "red tiger": "Red Tiger Gaming",
    "netent": "NetEnt", "net entertainment": "NetEnt",
    "thunderkick": "Thunderkick",
    "quickspin": "Quickspin",
    "yggdrasil gaming": "Yggdrasil Gaming", "yggdrasil": "Yggdrasil Gaming",
    "blueprint gaming": "Blueprint Gaming", "blueprint": "Blueprint Gaming",
    "evolution": "Evolution",
    "playtech": "Playtech",
    "igt": "IGT",
    "microgaming": "Microgaming", "games global": "Microgaming",
    "gamomat": "Gamomat",
    "endorphina": "Endorphina",
    "habanero": "Habanero",
    "bgaming": "BGaming",
    "playson": "Playson",
    "betsoft gaming": "Betsoft Gaming", "betsoft": "Betsoft Gaming",
    "isoftbet": "iSoftBet",
    "pg soft": "PG Soft", "pgsoft": "PG Soft",
    "evoplay entertainment": "Evoplay Entertainment", "evoplay": "Evoplay Entertainment",
    "stakelogic": "Stakelogic",
    "swintt": "Swintt",
    "novomatic": "Novomatic",
    "spribe": "Spribe",
    "spinomenal": "Spinomenal",
    "wazdan": "Wazdan",
    "3 oaks gaming": "3 Oaks Gaming", "3oaks": "3 Oaks Gaming",
    "kalamba games": "Kalamba Games", "kalamba": "Kalamba Games",
    "avatarux": "AvatarUX",
    "fantasma games": "Fantasma Games",
    "print studios": "Print Studios",
    "peter & sons": "Peter & Sons", "peter and sons": "Peter & Sons",
    "tom horn gaming": "Tom Horn Gaming", "tom horn": "Tom Horn Gaming",
    "slotmill": "Slotmill",
    "gaming corps": "Gaming Corps",
    "booongo": "Booongo",
    "foxium": "Foxium",
    "greentube": "Greentube",
    "synot games": "SYNOT Games",
    "tada gaming": "TaDa Gaming",
    "wizard games": "Wizard Games",
    "winfast games": "WinFast Games", "winfast": "WinFast Games",
    "reelplay": "ReelPlay",
    "northern lights gaming": "Northern Lights Gaming",
    "skywind group": "Skywind Group", "skywind": "Skywind Group",
    "mancala gaming": "Mancala Gaming",
    "mascot gaming": "Mascot Gaming",
    "platipus gaming": "Platipus Gaming", "platipus": "Platipus Gaming",
    "octoplay": "Octoplay",
    "golden hero": "Golden Hero",
    "high 5 games": "High 5 Games",
    "rubyplay": "RubyPlay",
    "belatra games": "Belatra Games", "belatra": "Belatra Games",
    "spadegaming": "Spadegaming",
    "booming games": "Booming Games",
    "gameart": "GameArt",
}

# Providers whose artwork is known to be stream-safe.
SAFE_PROVIDERS = (
    "pragmatic play", "hacksaw gaming", "nolimit city", "push gaming",
    "big time gaming", "elk studios", "thunderkick", "relax gaming",
    "red tiger gaming", "blueprint gaming", "quickspin", "yggdrasil gaming",
    "play'n go", "netent", "evolution", "gamomat", "kalamba games",
    "avatarux", "fantasma games", "print studios", "3 oaks gaming",
    "wazdan", "spinomenal", "booming games", "gameart", "endorphina",
    "habanero", "bgaming", "playson", "playtech", "igt", "microgaming",
    "evoplay entertainment", "stakelogic", "swintt", "novomatic",
    "betsoft gaming", "isoftbet", "pg soft", "peter & sons",
    "tom horn gaming", "slotmill", "gaming corps", "booongo",
    "spribe", "spadegaming", "foxium", "greentube", "synot games",
    "tada gaming", "wizard games", "winfast games", "reelplay",
    "northern lights gaming", "skywind group", "mancala gaming",
    "mascot gaming", "platipus gaming", "octoplay", "golden hero",
    "high 5 games", "rubyplay", "belatra games",
)


class IngestionSettings(BaseModel):
    """Immutable snapshot of every tunable the pipeline reads."""

    model_config = ConfigDict(frozen=True)

    gemini_model: str = GEMINI_MODEL
    gemini_base_url: str = GEMINI_BASE_URL
    gemini_api_key: Optional[SecretStr] = None
    gemini_max_retries: int = Field(default=GEMINI_MAX_RETRIES, ge=0)
    gemini_retry_base_seconds: float = Field(default=GEMINI_RETRY_BASE_SECONDS, ge=0)
    gemini_timeout_seconds: float = Field(default=GEMINI_TIMEOUT_SECONDS, gt=0)
    groundless_confidence_cap: int = GROUNDLESS_CONFIDENCE_CAP

    confidence_threshold: int = Field(default=CONFIDENCE_THRESHOLD, ge=0, le=100)
    rtp_min: float = RTP_MIN
    rtp_max: float = RTP_MAX
    max_win_ceiling: float = MAX_WIN_CEILING
    earliest_release_year: int = EARLIEST_RELEASE_YEAR
    ingestion_version: str = INGESTION_VERSION

    rate_limit_window_minutes: int = Field(default=RATE_LIMIT_WINDOW_MINUTES, ge=1)
    rate_limit_max_requests: int = Field(default=RATE_LIMIT_MAX_REQUESTS, ge=1)
    cache_ttl_hours: int = Field(default=CACHE_TTL_HOURS, ge=0)

    image_search_url: str = "https://www.google.com/search"
    image_search_timeout_seconds: float = IMAGE_SEARCH_TIMEOUT_SECONDS
    image_fetch_timeout_seconds: float = IMAGE_FETCH_TIMEOUT_SECONDS
    vision_timeout_seconds: float = VISION_TIMEOUT_SECONDS
    image_candidate_limit: int = IMAGE_CANDIDATE_LIMIT
    image_vision_checks: int = IMAGE_VISION_CHECKS

    batch_max_items: int = Field(default=BATCH_MAX_ITEMS, ge=1)
    batch_delay_seconds: float = Field(default=BATCH_DELAY_SECONDS, ge=0)

    allowed_source_domains: tuple[str, ...] = ALLOWED_SOURCE_DOMAINS
    blocked_domains: tuple[str, ...] = BLOCKED_DOMAINS
    blocked_image_keywords: tuple[str, ...] = BLOCKED_IMAGE_KEYWORDS
    blocked_search_terms: tuple[str, ...] = BLOCKED_SEARCH_TERMS
    canonical_providers: dict[str, str] = Field(default_factory=lambda: dict(CANONICAL_PROVIDERS))
    safe_providers: tuple[str, ...] = SAFE_PROVIDERS

    @property
    def gemini_url(self) -> str:
        return f"{self.gemini_base_url}/{self.gemini_model}:generateContent"

    def api_key(self) -> Optional[str]:
        if self.gemini_api_key is None:
            return None
        return self.gemini_api_key.get_secret_value() or None


DEFAULT_SETTINGS = IngestionSettings()

CONFIG_PATH_ENV = "SLOT_INGEST_CONFIG"


def load_yaml_overrides(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid ingestion config {path}: expected a top-level mapping.")
    unknown = set(raw) - set(IngestionSettings.model_fields)
    if unknown:
        raise ValueError(f"Invalid ingestion config {path}: unknown keys {sorted(unknown)}.")
    return raw


def load_settings(config_path: Optional[Path] = None) -> IngestionSettings:
    """Build settings from defaults, the YAML override file, then env vars."""
    load_env_if_present()

    values: dict[str, Any] = {}
    path = config_path or (Path(os.environ[CONFIG_PATH_ENV]) if os.environ.get(CONFIG_PATH_ENV) else None)
    if path is not None:
        values.update(load_yaml_overrides(path))

    values["confidence_threshold"] = env_int(
        "SLOT_CONFIDENCE_THRESHOLD", int(values.get("confidence_threshold", CONFIDENCE_THRESHOLD))
    )
    values["cache_ttl_hours"] = env_int("SLOT_CACHE_TTL_HOURS", int(values.get("cache_ttl_hours", CACHE_TTL_HOURS)))
    values["rate_limit_max_requests"] = env_int(
        "SLOT_RATE_LIMIT_MAX_REQUESTS",
        int(values.get("rate_limit_max_requests", RATE_LIMIT_MAX_REQUESTS)),
        minimum=1,
    )
    values["rate_limit_window_minutes"] = env_int(
        "SLOT_RATE_LIMIT_WINDOW_MINUTES",
        int(values.get("rate_limit_window_minutes", RATE_LIMIT_WINDOW_MINUTES)),
        minimum=1,
    )
    if os.environ.get("GEMINI_MODEL"):
        values["gemini_model"] = os.environ["GEMINI_MODEL"]
    if os.environ.get("GEMINI_API_KEY"):
        values["gemini_api_key"] = os.environ["GEMINI_API_KEY"]

    return IngestionSettings(**values)
