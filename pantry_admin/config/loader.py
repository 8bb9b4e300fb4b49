"""
Configuration management and loading.

Loads the admin allow-list, the collection inventory, the price table and
concurrency limits from a YAML file. Everything loaded here is immutable and
read once at process start.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Set

import yaml

from pantry_admin.core.identity import CONTACT_FIELD, DISPLAY_NAME_FIELD
from pantry_admin.core.inventory import DEFAULT_INVENTORY, CollectionInventory, build_inventory
from pantry_admin.core.pricing import PRICING_TABLE, ModelPricing, PricingTable


@dataclass(frozen=True)
class ConcurrencyConfig:
    """Caps on concurrent record store calls."""
    max_in_flight_scans: int = 8
    max_in_flight_deletes: int = 50
    max_deletes_per_collection: int = 10

    def __post_init__(self):
        """Validate limits are positive."""
        for name in ("max_in_flight_scans", "max_in_flight_deletes", "max_deletes_per_collection"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")


@dataclass(frozen=True)
class IdentityConfig:
    """Field names holding identity attributes, and the derivation policy."""
    display_name_field: str = DISPLAY_NAME_FIELD
    contact_field: str = CONTACT_FIELD
    derive_display_names: bool = True


@dataclass(frozen=True)
class AdminConfig:
    """Complete admin subsystem configuration."""
    admin_emails: FrozenSet[str]
    inventory: CollectionInventory = DEFAULT_INVENTORY
    pricing: PricingTable = PRICING_TABLE
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)


def default_config(admin_emails: Iterable[str] = ()) -> AdminConfig:
    """Built-in configuration with the given allow-list."""
    return AdminConfig(admin_emails=frozenset(admin_emails))


def load_admin_config(path: str) -> AdminConfig:
    """Load and validate admin configuration from YAML file.

    Strict validation ensures a typo can never silently drop a collection
    from the inventory or an address from the allow-list.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AdminConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Admin config file not found: {path}")

    # Load YAML content
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    # Validate top-level structure
    allowed_top_keys = {'admin_emails', 'collections', 'pricing', 'concurrency', 'identity'}
    _reject_unknown(raw_config, allowed_top_keys, "configuration")

    if 'admin_emails' not in raw_config:
        raise ValueError("Missing required 'admin_emails' section")
    admin_emails = _parse_admin_emails(raw_config['admin_emails'])

    inventory = DEFAULT_INVENTORY
    if 'collections' in raw_config:
        inventory = _parse_inventory(_section(raw_config, 'collections'))

    pricing = PRICING_TABLE
    if 'pricing' in raw_config:
        pricing = _parse_pricing(_section(raw_config, 'pricing'))

    concurrency = ConcurrencyConfig()
    if 'concurrency' in raw_config:
        data = _section(raw_config, 'concurrency')
        _reject_unknown(data, {'max_in_flight_scans', 'max_in_flight_deletes', 'max_deletes_per_collection'}, "concurrency")
        for key, value in data.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"'concurrency.{key}' must be an integer")
        concurrency = ConcurrencyConfig(**data)

    identity = IdentityConfig()
    if 'identity' in raw_config:
        data = _section(raw_config, 'identity')
        _reject_unknown(data, {'display_name_field', 'contact_field', 'derive_display_names'}, "identity")
        for key in ('display_name_field', 'contact_field'):
            if key in data and (not isinstance(data[key], str) or not data[key].strip()):
                raise ValueError(f"'identity.{key}' must be a non-empty string")
        if 'derive_display_names' in data and not isinstance(data['derive_display_names'], bool):
            raise ValueError("'identity.derive_display_names' must be a boolean")
        identity = IdentityConfig(**data)

    return AdminConfig(
        admin_emails=admin_emails,
        inventory=inventory,
        pricing=pricing,
        concurrency=concurrency,
        identity=identity
    )


def _section(raw_config: Dict, key: str) -> Dict:
    data = raw_config[key]
    if not isinstance(data, dict):
        raise ValueError(f"'{key}' must be a dictionary")
    return data


def _reject_unknown(data: Dict, allowed: Set[str], path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_admin_emails(data: Any) -> FrozenSet[str]:
    if not isinstance(data, list) or not data:
        raise ValueError("'admin_emails' must be a non-empty list")
    emails = set()
    for email in data:
        if not isinstance(email, str) or '@' not in email:
            raise ValueError(f"Invalid admin email: {email!r}")
        emails.add(email.strip().lower())
    return frozenset(emails)


def _parse_inventory(data: Dict) -> CollectionInventory:
    """Parse the collection inventory.

    Args:
        data: ``collections`` section

    Returns:
        Validated CollectionInventory

    Raises:
        ValueError: If the inventory is invalid
    """
    _reject_unknown(data, {'keyed', 'field_referencing', 'usage_collection'}, "collections")

    lists = {}
    for key in ('keyed', 'field_referencing'):
        names = data.get(key, [])
        if not isinstance(names, list) or not all(isinstance(n, str) and n.strip() for n in names):
            raise ValueError(f"'collections.{key}' must be a list of collection names")
        lists[key] = [n.strip() for n in names]

    usage_collection = data.get('usage_collection')
    if usage_collection is not None and not isinstance(usage_collection, str):
        raise ValueError("'collections.usage_collection' must be a string")

    return build_inventory(lists['keyed'], lists['field_referencing'], usage_collection)


def _parse_pricing(data: Dict) -> PricingTable:
    """Parse the price table.

    Args:
        data: ``pricing`` section

    Returns:
        Validated PricingTable

    Raises:
        ValueError: If the price table is invalid
    """
    _reject_unknown(data, {'default_model', 'models'}, "pricing")

    if 'default_model' not in data:
        raise ValueError("Missing required 'default_model' in pricing")
    models = data.get('models')
    if not isinstance(models, dict) or not models:
        raise ValueError("'pricing.models' must be a non-empty dictionary")

    prices = {}
    for model, entry in models.items():
        path = f"pricing.models.{model}"
        if not isinstance(entry, dict):
            raise ValueError(f"'{path}' must be a dictionary")
        _reject_unknown(entry, {'prompt_cost_per_1k', 'completion_cost_per_1k'}, path)
        prices[str(model)] = ModelPricing(
            prompt_cost_per_1k=_price(entry, 'prompt_cost_per_1k', path),
            completion_cost_per_1k=_price(entry, 'completion_cost_per_1k', path)
        )

    return PricingTable(prices=prices, default_model=str(data['default_model']))


def _price(entry: Dict, key: str, path: str) -> Decimal:
    if key not in entry:
        raise ValueError(f"Missing required '{key}' in {path}")
    value = entry[key]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{key}' in {path} must be a number")
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{key}' in {path} must be a number")
    if price < 0:
        raise ValueError(f"'{key}' in {path} must be >= 0")
    return price
