"""
AssetRegistry -- lifetime-scoped, thread-safe symbol -> Asset map.

Responsibility:
    Resolves every asset leg's symbol to exactly one canonical ``Asset``.
    One registry instance is constructed per account run (or per test) and
    passed into the builder; there is no process-wide cache.

Architecture position:
    Kernel > Domain.  Shared by construction worker threads.

Invariants enforced:
    - symbol -> Asset is a stable bijection for the registry's lifetime.
    - Concurrent first-creation of one symbol serializes on a per-symbol
      lock, so exactly one Asset is ever created per symbol.
    - Aliases exist only when registered explicitly per institution.
      Similar-looking symbols (spot ticker vs. a fund tracking it) are
      never merged.

Failure modes:
    - InvalidSymbolError for an empty symbol.
    - AliasConflictError when an alias is re-pointed at another symbol.
"""

import threading
from typing import Callable, Iterable

from ledger_kernel.domain.assets import Asset, normalize_symbol
from ledger_kernel.exceptions import AliasConflictError, InvalidSymbolError
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.asset_registry")


class AssetRegistry:
    """
    Canonical asset identity map.

    Contract:
        ``resolve(symbol, institution=...)`` returns the canonical Asset,
        creating it on first sight.  ``on_create`` (optional) is invoked
        once per newly created asset, inside that symbol's lock.

    Non-goals:
        Does not persist.  The construction service copies new assets to
        the database from the calling thread after the worker pool drains.
    """

    def __init__(
        self,
        preload: Iterable[Asset] = (),
        on_create: Callable[[Asset], None] | None = None,
    ):
        self._assets: dict[str, Asset] = {a.symbol: a for a in preload}
        self._aliases: dict[str, dict[str, str]] = {}
        self._symbol_locks: dict[str, threading.Lock] = {}
        self._map_lock = threading.Lock()
        self._on_create = on_create

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def register_mapping(self, institution: str, alias: str, canonical: str) -> None:
        """Map ``alias`` to ``canonical`` for one institution only."""
        norm_alias = normalize_symbol(alias)
        norm_canonical = normalize_symbol(canonical)
        if not norm_alias or not norm_canonical:
            raise InvalidSymbolError(alias if not norm_alias else canonical)

        with self._map_lock:
            mapping = self._aliases.setdefault(institution, {})
            existing = mapping.get(norm_alias)
            if existing is not None and existing != norm_canonical:
                raise AliasConflictError(institution, norm_alias, existing, norm_canonical)
            mapping[norm_alias] = norm_canonical

        logger.info(
            "asset_alias_registered",
            extra={
                "institution": institution,
                "alias": norm_alias,
                "canonical": norm_canonical,
            },
        )

    def canonical_symbol(self, symbol: str, institution: str | None = None) -> str:
        normalized = normalize_symbol(symbol)
        if institution is not None:
            with self._map_lock:
                mapped = self._aliases.get(institution, {}).get(normalized)
            if mapped is not None:
                return mapped
        return normalized

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        symbol: str,
        name: str | None = None,
        institution: str | None = None,
    ) -> Asset:
        canonical = self.canonical_symbol(symbol, institution)
        if not canonical:
            raise InvalidSymbolError(symbol)

        with self._map_lock:
            asset = self._assets.get(canonical)
            if asset is not None:
                return asset
            symbol_lock = self._symbol_locks.setdefault(canonical, threading.Lock())

        with symbol_lock:
            # Compare-and-create: another thread may have won the race.
            with self._map_lock:
                asset = self._assets.get(canonical)
            if asset is not None:
                return asset

            asset = Asset.create(canonical, name)
            if self._on_create is not None:
                self._on_create(asset)
            with self._map_lock:
                self._assets[canonical] = asset

        logger.debug(
            "asset_created",
            extra={"symbol": asset.symbol, "asset_class": asset.asset_class.value},
        )
        return asset

    def get(self, symbol: str) -> Asset | None:
        with self._map_lock:
            return self._assets.get(normalize_symbol(symbol))

    def all_assets(self) -> list[Asset]:
        with self._map_lock:
            return sorted(self._assets.values(), key=lambda a: a.symbol)

    def __contains__(self, symbol: str) -> bool:
        return self.get(symbol) is not None

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._assets)
