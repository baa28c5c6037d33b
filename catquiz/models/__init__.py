"""Domain types shared by the estimation engine and its collaborators."""

from catquiz.models.types import ItemParamStatus, ModelName, Status, StrategyName

__all__ = ["ItemParamStatus", "ModelName", "Status", "StrategyName"]
