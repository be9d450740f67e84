"""
Model registry mapping model keys to model factories.

Factories take the sector configuration so models that depend on sector
lookups (the DCF discount rate) are built consistently. Extra factories
add or replace models:

  models = create_models(sectors, extra={ModelKey.PSR: lambda s: MyPSR()})
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Optional

from fairvalue.config import SectorConfig
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.models.bands import DividendYieldModel
from fairvalue.models.bands import pbr_model
from fairvalue.models.bands import per_model
from fairvalue.models.base import ValuationModel
from fairvalue.models.capex import CapExModel
from fairvalue.models.dcf import DCFModel
from fairvalue.models.enterprise import EVEBITDAModel
from fairvalue.models.enterprise import PSRModel

ModelFactory = Callable[[SectorConfig], ValuationModel]

MODEL_FACTORIES: dict[ModelKey, ModelFactory] = {
    ModelKey.DCF: DCFModel,
    ModelKey.PER: lambda sectors: per_model(),
    ModelKey.PBR: lambda sectors: pbr_model(),
    ModelKey.DIVIDEND: lambda sectors: DividendYieldModel(),
    ModelKey.CAPEX: lambda sectors: CapExModel(),
    ModelKey.EV_EBITDA: lambda sectors: EVEBITDAModel(),
    ModelKey.PSR: lambda sectors: PSRModel(),
}


def _resolve(name: ModelKey | str,
             factories: Mapping[ModelKey, ModelFactory]) -> ModelKey:
  try:
    key = name if isinstance(name, ModelKey) else ModelKey(name)
    factories[key]
  except (KeyError, ValueError) as e:
    available = [key.value for key in MODEL_KEYS if key in factories]
    raise KeyError(f"Unknown model: '{getattr(name, 'value', name)}'. "
                   f'Available: {available}') from e
  return key


def create_models(
    sectors: Optional[SectorConfig] = None,
    names: Optional[Iterable[ModelKey | str]] = None,
    extra: Optional[Mapping[ModelKey, ModelFactory]] = None,
) -> list[ValuationModel]:
  """
  Instantiate models in report order.

  Args:
    sectors: Sector configuration passed to every factory
    names: Models to create (default: every registered model)
    extra: Additional or overriding factories

  Returns:
    List of model instances

  Raises:
    KeyError: If a name is not a registered model
  """
  sectors = sectors or SectorConfig()
  factories = {**MODEL_FACTORIES, **(extra or {})}
  if names is None:
    keys = [key for key in MODEL_KEYS if key in factories]
  else:
    requested = {_resolve(name, factories) for name in names}
    keys = [key for key in MODEL_KEYS if key in requested]
  return [factories[key](sectors) for key in keys]


def list_models() -> list[str]:
  """Names of the built-in models."""
  return [key.value for key in MODEL_KEYS if key in MODEL_FACTORIES]
