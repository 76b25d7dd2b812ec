"""Configuration management for the MACI processing engine."""

from .config import (
    EngineConfig,
    TreeDepths,
    MaxValues,
    BatchSizes,
    VOICE_CREDIT_MODELS,
    load_config,
    save_config,
)

__all__ = [
    'EngineConfig',
    'TreeDepths',
    'MaxValues',
    'BatchSizes',
    'VOICE_CREDIT_MODELS',
    'load_config',
    'save_config',
]
