"""
Model registry for Quansheng radios.

Memory map, battery voltage profiles and per-model protocol parameters.
"""

from .registry import (
    MemoryRegion,
    K5MemoryMap,
    VoltageProfile,
    ModelConfig,
    DEFAULT_MEMORY_MAP,
    VOLTAGE_PROFILES,
    list_models,
    get_model,
    get_voltage_profile,
)

__all__ = [
    "MemoryRegion",
    "K5MemoryMap",
    "VoltageProfile",
    "ModelConfig",
    "DEFAULT_MEMORY_MAP",
    "VOLTAGE_PROFILES",
    "list_models",
    "get_model",
    "get_voltage_profile",
]
