"""Loading PlacementConfig and RoomCatalog from OmegaConf configs.

Configs look like ``configurations/generation/default.yaml``:

.. code-block:: yaml

    placement:
      target_rooms: 24
      seal_unmatched: true
    catalog:
      use_default: true
      templates:
        - name: crossing
          layout: ["#.#", "...", "#.#"]

A config without a ``placement`` (or ``catalog``) section is read as that
section itself.
"""

import logging

from pathlib import Path

from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import ConfigKeyError, ValidationError

from dungeonsmith.layout.catalog import RoomCatalog, RoomTemplate
from dungeonsmith.layout.default_rooms import CAVERN_LAYOUTS, START_CAVERN
from dungeonsmith.layout.geometry import QUARTER_TURNS
from dungeonsmith.layout.placement_search import InvalidConfigError, PlacementConfig

console_logger = logging.getLogger(__name__)

ConfigLike = DictConfig | dict | str | Path | None


def _to_dictconfig(cfg: ConfigLike) -> DictConfig:
    if cfg is None:
        return OmegaConf.create({})
    if isinstance(cfg, (str, Path)):
        path = Path(cfg)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        loaded = OmegaConf.load(path)
        if not isinstance(loaded, DictConfig):
            raise InvalidConfigError(f"Config file {path} must contain a mapping")
        return loaded
    if isinstance(cfg, DictConfig):
        return cfg
    return OmegaConf.create(cfg)


def _section(cfg: DictConfig, name: str) -> DictConfig:
    if name in cfg:
        section = cfg[name]
        return section if section is not None else OmegaConf.create({})
    return cfg


def load_placement_config(cfg: ConfigLike = None) -> PlacementConfig:
    """Build a PlacementConfig from a config merged over the defaults.

    Args:
        cfg: None, a dict, a DictConfig or a path to a YAML file. Only the
            ``placement`` section is read when present.

    Returns:
        A validated PlacementConfig.

    Raises:
        InvalidConfigError: On unknown keys, values of the wrong type, or
            inconsistent values.
    """
    section = _section(_to_dictconfig(cfg), "placement")
    try:
        merged = OmegaConf.merge(OmegaConf.structured(PlacementConfig), section)
        config = OmegaConf.to_object(merged)
    except (ConfigKeyError, ValidationError) as e:
        raise InvalidConfigError(f"Invalid placement config: {e}") from e
    config.validate()
    console_logger.debug(f"Loaded placement config: {config}")
    return config


def load_catalog(cfg: ConfigLike = None) -> RoomCatalog:
    """Build a RoomCatalog from a config.

    Recognized keys of the ``catalog`` section:

    - ``use_default`` (default True): start from the built-in cavern rooms.
    - ``rotations``: rotations given to the built-in rooms (default all four).
    - ``templates`` / ``anchors``: extra templates in ``RoomTemplate.to_dict``
      form, or with ``layout`` rows instead of connectors.

    Returns:
        The catalog; the built-in one when nothing else is configured.
    """
    section = _section(_to_dictconfig(cfg), "catalog")
    data = OmegaConf.to_container(section, resolve=True)
    use_default = data.get("use_default", True)
    rotations = tuple(data.get("rotations") or QUARTER_TURNS)

    templates: list[RoomTemplate] = []
    anchors: list[RoomTemplate] = []
    if use_default:
        templates.extend(
            RoomTemplate.from_layout(rows=rows, name=name, rotations=rotations)
            for name, rows in CAVERN_LAYOUTS.items()
        )
        anchors.append(
            RoomTemplate.from_layout(
                rows=START_CAVERN, name="start_cavern", rotations=rotations
            )
        )
    templates.extend(RoomTemplate.from_dict(t) for t in data.get("templates") or [])
    configured_anchors = [RoomTemplate.from_dict(t) for t in data.get("anchors") or []]
    if configured_anchors:
        anchors = configured_anchors

    catalog = RoomCatalog(templates=templates, anchors=anchors)
    console_logger.info(
        f"Loaded catalog with {len(catalog.templates)} templates and "
        f"{len(catalog.anchors)} anchors"
    )
    return catalog
