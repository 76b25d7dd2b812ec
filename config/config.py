from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import yaml

from utils.errors import InputValidationError

logger = logging.getLogger(__name__)

VOICE_CREDIT_MODELS = ("quadratic", "linear")


@dataclass
class TreeDepths:
    int_state_tree_depth: int = 1
    message_tree_depth: int = 2
    message_tree_sub_depth: int = 1
    vote_option_tree_depth: int = 2

    def __post_init__(self):
        if self.message_tree_sub_depth > self.message_tree_depth:
            raise InputValidationError("message tree sub depth exceeds the message tree depth")
        for name, value in self.__dict__.items():
            if value < 0:
                raise InputValidationError(f"{name} must be non-negative")


@dataclass
class MaxValues:
    max_users: int = 25
    max_messages: int = 25
    max_vote_options: int = 25

    def __post_init__(self):
        for name, value in self.__dict__.items():
            if value <= 0:
                raise InputValidationError(f"{name} must be positive")


@dataclass
class BatchSizes:
    message_batch_size: int = 5
    tally_batch_size: int = 5
    subsidy_batch_size: int = 5


@dataclass
class EngineConfig:
    state_tree_depth: int = 10
    deactivation_queue_size: int = 5
    voice_credit_model: str = "quadratic"

    tree_depths: TreeDepths = field(default_factory=TreeDepths)
    max_values: MaxValues = field(default_factory=MaxValues)
    message_batch_size: int = 5

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    log_level: str = "INFO"
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        if self.voice_credit_model not in VOICE_CREDIT_MODELS:
            raise InputValidationError(
                f"voice_credit_model must be one of {VOICE_CREDIT_MODELS}")
        if self.state_tree_depth <= 0:
            raise InputValidationError("state_tree_depth must be positive")
        if self.deactivation_queue_size <= 0:
            raise InputValidationError("deactivation_queue_size must be positive")
        if self.enable_debug_mode:
            self.log_level = "DEBUG"


def _config_from_dict(config_data: Dict[str, Any]) -> EngineConfig:
    trees = config_data.get('tree_depths', {})
    limits = config_data.get('max_values', {})
    defaults = TreeDepths()
    default_limits = MaxValues()

    return EngineConfig(
        state_tree_depth=config_data.get('state_tree_depth', 10),
        deactivation_queue_size=config_data.get('deactivation_queue_size', 5),
        voice_credit_model=config_data.get('voice_credit_model', 'quadratic'),
        tree_depths=TreeDepths(
            int_state_tree_depth=trees.get('int_state_tree_depth', defaults.int_state_tree_depth),
            message_tree_depth=trees.get('message_tree_depth', defaults.message_tree_depth),
            message_tree_sub_depth=trees.get('message_tree_sub_depth', defaults.message_tree_sub_depth),
            vote_option_tree_depth=trees.get('vote_option_tree_depth', defaults.vote_option_tree_depth),
        ),
        max_values=MaxValues(
            max_users=limits.get('max_users', default_limits.max_users),
            max_messages=limits.get('max_messages', default_limits.max_messages),
            max_vote_options=limits.get('max_vote_options', default_limits.max_vote_options),
        ),
        message_batch_size=config_data.get('message_batch_size', 5),
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        log_level=config_data.get('log_level', 'INFO'),
        enable_debug_mode=config_data.get('enable_debug_mode', False),
    )


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from a YAML file, or return the defaults"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        return EngineConfig()

    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise InputValidationError(f"config file {config_path} must contain a mapping")

    return _config_from_dict(config_data)


def save_config(config: EngineConfig, config_path: Optional[Path] = None):
    """Save configuration to a YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'state_tree_depth': config.state_tree_depth,
        'deactivation_queue_size': config.deactivation_queue_size,
        'voice_credit_model': config.voice_credit_model,
        'tree_depths': {
            'int_state_tree_depth': config.tree_depths.int_state_tree_depth,
            'message_tree_depth': config.tree_depths.message_tree_depth,
            'message_tree_sub_depth': config.tree_depths.message_tree_sub_depth,
            'vote_option_tree_depth': config.tree_depths.vote_option_tree_depth,
        },
        'max_values': {
            'max_users': config.max_values.max_users,
            'max_messages': config.max_values.max_messages,
            'max_vote_options': config.max_values.max_vote_options,
        },
        'message_batch_size': config.message_batch_size,
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'log_level': config.log_level,
        'enable_debug_mode': config.enable_debug_mode,
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
