# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/steps.py

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties

if TYPE_CHECKING:
    from .core import DeploymentObject

log = logging.getLogger("tpm")

FIRST_GROUP_ID = -100
FINAL_GROUP_ID = 100
FIRST_STEP_WEIGHT = -100
FINAL_STEP_WEIGHT = 100


class Parallelization(IntEnum):
    """Ordered from strictest to loosest; a group runs at the minimum."""

    NONE = 0
    BY_SERVICE = 1
    BY_HOST = 2


class StepKind(Enum):
    DEPLOYMENT = "deployment"
    COMMITMENT = "commitment"


@dataclass(frozen=True)
class DeploymentStep:
    method_name: str
    group_id: int = 0
    weight: int = 0
    parallelization: Parallelization = Parallelization.BY_HOST
    kind: StepKind = StepKind.DEPLOYMENT


@dataclass(frozen=True)
class BoundStep:
    step: DeploymentStep
    provider: str
    fn: Callable[[], None]

    def __call__(self) -> None:
        self.fn()


def _step_decorator(kind: StepKind):
    def factory(
        group_id: int = 0,
        weight: int = 0,
        parallelization: Parallelization = Parallelization.BY_HOST,
    ):
        def decorator(fn):
            fn.__tpm_step__ = DeploymentStep(fn.__name__, group_id, weight, parallelization, kind)
            return fn
        return decorator
    return factory


deployment_step = _step_decorator(StepKind.DEPLOYMENT)
commitment_step = _step_decorator(StepKind.COMMITMENT)


class StepProvider:
    """
    A named batch of steps. Methods decorated with ``deployment_step`` or
    ``commitment_step`` are collected once, when the class is defined.
    """

    name = ""
    STEPS: Dict[str, DeploymentStep] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        steps: Dict[str, DeploymentStep] = {}
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                step = getattr(value, "__tpm_step__", None)
                if step is not None:
                    steps[attr] = step
        cls.STEPS = steps

    def __init__(self, deployment: "DeploymentObject"):
        self.deployment = deployment

    # ------------------------------------------------------------------
    # context available to steps
    # ------------------------------------------------------------------
    @property
    def config(self) -> Properties:
        return self.deployment.config

    @property
    def host(self) -> Optional[str]:
        return self.config.get_nested([DEPLOYMENT_HOST])

    @property
    def host_key(self) -> Optional[str]:
        return self.config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])

    def additional_property(self, key: str, default: Any = None) -> Any:
        return self.deployment.additional_property(key, default)

    def cmd_result(self, command: str, *, ignore_fail: bool = False) -> str:
        return self.deployment.runner.cmd_result(command, ignore_fail=ignore_fail)

    def info(self, message: str) -> None:
        log.info(f"{self.host} >> {message}")

    def warning(self, message: str) -> None:
        self.deployment.messages.warning(message, self.host)

    def output_property(self, key: str, value: Any) -> None:
        self.deployment.messages.output_property(self.host_key, key, value)

    def file_exists(self, path: str) -> bool:
        return self.cmd_result(f"test -f {shlex.quote(path)} && echo yes || echo no") == "yes"

    def bound_steps(self) -> List[BoundStep]:
        return [BoundStep(step, self.name, getattr(self, attr)) for attr, step in self.STEPS.items()]


PROVIDERS: Dict[str, Type[StepProvider]] = {}


def register_provider(cls: Type[StepProvider]) -> Type[StepProvider]:
    PROVIDERS[cls.name] = cls
    return cls


def get_provider(name: str) -> Type[StepProvider]:
    try:
        return PROVIDERS[name]
    except KeyError:
        raise KeyError(f"unknown step provider {name!r}") from None
