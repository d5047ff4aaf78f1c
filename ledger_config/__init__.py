"""
ledger_config -- single public entrypoint for institution profiles.

Responsibility:
    ``get_institution_profile()`` is the only way services obtain
    institution-specific settings.  Profiles are YAML files under
    ``profiles/`` (or a caller-supplied directory) named ``<institution>.yaml``.

Failure modes:
    - ``InstitutionProfileNotFoundError`` -- no profile file for the name.
    - ``yaml.YAMLError`` / ``KeyError`` / ``ValueError`` -- malformed profile.

Audit relevance:
    Every successful load emits an ``institution_profile_loaded`` record
    carrying the profile checksum, tying a run to the exact configuration
    that governed it.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import load_profile
from ledger_config.schema import FieldMappingDef, InstitutionProfile, ReconciliationSettings
from ledger_kernel.exceptions import InstitutionProfileNotFoundError
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "profiles"


def get_institution_profile(name: str, config_dir: Path | None = None) -> InstitutionProfile:
    """
    Load the profile for institution ``name``.

    Raises:
        InstitutionProfileNotFoundError: no ``<name>.yaml`` in the directory.
    """
    profiles_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    key = (name or "").strip().lower()
    path = profiles_dir / f"{key}.yaml"
    if not key or not path.is_file():
        raise InstitutionProfileNotFoundError(name, str(profiles_dir))

    profile = load_profile(path)
    logger.info(
        "institution_profile_loaded",
        extra={
            "institution": profile.name,
            "checksum": profile.checksum,
            "settlement_policy": profile.settlement_policy,
            "balance_date_basis": profile.balance_date_basis,
        },
    )
    return profile


def list_institution_profiles(config_dir: Path | None = None) -> tuple[str, ...]:
    profiles_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    return tuple(sorted(p.stem for p in profiles_dir.glob("*.yaml")))


__all__ = [
    "FieldMappingDef",
    "InstitutionProfile",
    "ReconciliationSettings",
    "get_institution_profile",
    "list_institution_profiles",
]
